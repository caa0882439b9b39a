# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Exception taxonomy and status classification for the auth subsystem.

Flow-negotiation errors (OAuthError family) are surfaced to the user once and
discard the flow session. Storage errors are absorbed on load and surfaced on
save/clear. AuthorizationFailedError and StreamRequestError never leave the
stream retry coordinator; callers only ever observe stream events.
"""

from typing import Optional


class ScryAuthError(Exception):
    """Base class for every error raised by scry_auth."""


# =============================================================================
# OAUTH NEGOTIATION
# =============================================================================


class OAuthError(ScryAuthError):
    """Raised when negotiating a credential with a provider fails."""


class InvalidCodeError(OAuthError):
    """The pasted authorization response could not be parsed or used."""


class StateMismatchError(OAuthError):
    """The state returned with the authorization code is not the one we issued."""


class OAuthNetworkError(OAuthError):
    """The token endpoint could not be reached."""


class ProviderRejectedError(OAuthError):
    """The provider refused the code or the credential failed a format check."""


# =============================================================================
# STORAGE
# =============================================================================


class StorageError(ScryAuthError):
    """Raised when the credential file cannot be read or written."""


class StorageIOError(StorageError):
    pass


class StorageParseError(StorageError):
    pass


class CredentialNotFoundError(ScryAuthError):
    """No credential is stored under the requested key."""

    def __init__(self, storage_key: str):
        super().__init__(f"No stored credential for '{storage_key}'")
        self.storage_key = storage_key


class ReconnectRequiredError(ScryAuthError):
    """The stored credential was rejected; the user has to connect again."""

    def __init__(self, storage_key: str, message: Optional[str] = None):
        super().__init__(
            message or f"Credential for '{storage_key}' is no longer valid. Please reconnect."
        )
        self.storage_key = storage_key


# =============================================================================
# STREAMING (internal to the retry coordinator)
# =============================================================================


class AuthorizationFailedError(ScryAuthError):
    """A provider answered a request with 401/403."""

    def __init__(self, status_code: int, message: str = ""):
        super().__init__(f"Authorization failed ({status_code}): {message}".rstrip(": "))
        self.status_code = status_code


class StreamRequestError(ScryAuthError):
    """Any non-authorization failure of a chat request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# STATUS CLASSIFICATION
# =============================================================================


def is_authorization_status(status_code: int) -> bool:
    """Checks if the status code means the credential was refused."""
    return status_code in (401, 403)


def is_rate_limit_status(status_code: int) -> bool:
    """Checks if the status code is a rate limit response."""
    return status_code == 429
