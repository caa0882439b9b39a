# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/scry_auth/utils/__init__.py

from .credential_formatter import format_credential_for_display

__all__ = ['format_credential_for_display']
