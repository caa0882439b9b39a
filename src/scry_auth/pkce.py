# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/scry_auth/pkce.py

import base64
import hashlib
import secrets
from typing import Tuple

# 64 random bytes base64url-encoded without padding -> 86 characters
VERIFIER_NUM_BYTES = 64
STATE_NUM_BYTES = 32

MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

CODE_CHALLENGE_METHOD = "S256"

# RFC 3986 unreserved characters
UNRESERVED_CHARACTERS = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier(num_bytes: int = VERIFIER_NUM_BYTES) -> str:
    """
    Generate a PKCE code verifier from a cryptographically secure source.

    Returns:
        A base64url string of 43-128 unreserved characters
    """
    verifier = _b64url(secrets.token_bytes(num_bytes))
    if not MIN_VERIFIER_LENGTH <= len(verifier) <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"{num_bytes} random bytes give a {len(verifier)}-character verifier; "
            f"PKCE requires {MIN_VERIFIER_LENGTH}-{MAX_VERIFIER_LENGTH}"
        )
    return verifier


def compute_code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_state_nonce() -> str:
    return _b64url(secrets.token_bytes(STATE_NUM_BYTES))


def generate_pkce() -> Tuple[str, str]:
    """
    Generate PKCE code verifier and challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    code_verifier = generate_code_verifier()
    return code_verifier, compute_code_challenge(code_verifier)


def is_valid_code_verifier(value: str) -> bool:
    return MIN_VERIFIER_LENGTH <= len(value) <= MAX_VERIFIER_LENGTH and all(
        ch in UNRESERVED_CHARACTERS for ch in value
    )
