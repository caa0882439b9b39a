# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Token validation.

A single cheap authenticated request decides whether a stored credential is
still accepted. Only an explicit authorization refusal (401/403) counts as
Invalid; network trouble and server errors are Inconclusive so a flaky
connection never deletes a good credential.
"""

import logging
from typing import Optional

import httpx

from .credential_store import CredentialStore
from .errors import (
    AuthorizationFailedError,
    ReconnectRequiredError,
    StorageError,
    StreamRequestError,
    is_authorization_status,
    is_rate_limit_status,
)
from .providers import ProviderInterface, get_provider
from .types import Credential, ValidationOutcome
from .utils import format_credential_for_display
from .validation_cache import ValidationCache

lib_logger = logging.getLogger("scry_auth")

VALIDATION_TIMEOUT_SECONDS = 15.0


def classify_status(status_code: int) -> ValidationOutcome:
    """
    Map a validation response status onto an outcome.

    - 401/403: the credential was refused -> INVALID
    - 429: the credential authenticated but is throttled -> VALID
    - 2xx: VALID
    - anything else (5xx, unexpected 4xx): INCONCLUSIVE
    """
    if is_authorization_status(status_code):
        return ValidationOutcome.INVALID
    if is_rate_limit_status(status_code):
        return ValidationOutcome.VALID
    if 200 <= status_code < 300:
        return ValidationOutcome.VALID
    return ValidationOutcome.INCONCLUSIVE


class TokenValidator:
    """
    Confirms stored credentials with the provider and applies the
    cache/store policy for the outcome.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[ValidationCache] = None,
        store: Optional[CredentialStore] = None,
    ):
        self.client = client
        self.cache = cache if cache is not None else ValidationCache()
        self.store = store

    async def validate(
        self,
        credential: Credential,
        provider: Optional[ProviderInterface] = None,
    ) -> ValidationOutcome:
        """
        Issue the provider's cheapest authenticated request.

        Never raises for network or HTTP failures; those are folded into the
        returned outcome.
        """
        plugin = provider or get_provider(credential.provider)
        method, url = plugin.validate_endpoint(credential)

        try:
            headers = await plugin.build_validation_headers(credential, self.client)
            response = await self.client.request(
                method, url, headers=headers, timeout=VALIDATION_TIMEOUT_SECONDS
            )
        except AuthorizationFailedError as e:
            lib_logger.info(f"Validation of '{credential.storage_key}' refused: {e}")
            return ValidationOutcome.INVALID
        except (httpx.HTTPError, StreamRequestError) as e:
            lib_logger.warning(
                f"Could not validate '{credential.storage_key}' "
                f"({format_credential_for_display(credential.secret)}): {e}"
            )
            return ValidationOutcome.INCONCLUSIVE

        outcome = classify_status(response.status_code)
        lib_logger.debug(
            f"Validation of '{credential.storage_key}' returned "
            f"{response.status_code} -> {outcome.value}"
        )
        return outcome

    async def ensure_usable(
        self,
        credential: Credential,
        provider: Optional[ProviderInterface] = None,
    ) -> ValidationOutcome:
        """
        Decide whether a stored credential may be used for this session.

        A credential already confirmed in this process is used without a
        network call. VALID marks the cache. INCONCLUSIVE leaves the cache
        untouched and lets the session proceed.

        Raises:
            ReconnectRequiredError: the provider refused the credential; it
                has been cleared from the store and the cache
        """
        storage_key = credential.storage_key
        if self.cache.is_validated(storage_key):
            lib_logger.debug(f"Using cached validation for '{storage_key}'")
            return ValidationOutcome.VALID

        outcome = await self.validate(credential, provider)

        if outcome == ValidationOutcome.VALID:
            self.cache.mark_validated(storage_key)
        elif outcome == ValidationOutcome.INVALID:
            self.cache.invalidate(storage_key)
            if self.store is not None:
                try:
                    await self.store.clear(storage_key)
                except StorageError as e:
                    lib_logger.error(f"Failed to clear rejected credential '{storage_key}': {e}")
            lib_logger.warning(f"Stored credential for '{storage_key}' was rejected")
            raise ReconnectRequiredError(storage_key)
        else:
            lib_logger.info(
                f"Validation of '{storage_key}' was inconclusive; continuing with it"
            )
        return outcome
