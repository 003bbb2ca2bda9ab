# SPDX-License-Identifier: MIT
"""Configuration of external programs."""
