# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Utility for formatting credential identifiers for display in logs.

This module provides a centralized way to format credentials for logging,
ensuring that secrets never reach a log file or the console in full.
Only the last 6 characters of a secret are shown.
"""

from typing import Optional


def format_credential_for_display(secret: Optional[str]) -> str:
    """
    Format a secret (API key or access token) for display in logs.

    Args:
        secret: The secret string, or None

    Returns:
        A display-safe string representation of the secret

    Examples:
        >>> format_credential_for_display("sk-ant-1234567890abcdef")
        "...abcdef"
        >>> format_credential_for_display("abc")
        "..."
    """
    if not secret or len(secret) <= 6:
        return "..."
    return f"...{secret[-6:]}"
