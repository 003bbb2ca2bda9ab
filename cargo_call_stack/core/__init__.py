# SPDX-License-Identifier: MIT
"""Core types: errors, invocation arguments and project metadata."""
