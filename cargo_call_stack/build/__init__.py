# SPDX-License-Identifier: MIT
"""Driving the cargo build and reading its side channel."""
