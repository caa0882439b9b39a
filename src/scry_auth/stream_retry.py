# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Keeps one chat stream alive across transient authorization failures.

An authorization failure (401/403) invalidates the validation cache entry,
waits, and replays the full request. After MAX_ATTEMPTS retries the failure
is terminal: the stored credential is cleared and a single AuthError event is
emitted. Any other failure is reported once as StreamError without retrying.

The coordinator only reads the message list it is given; conversation
history belongs to the caller.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence

import httpx

from .credential_store import CredentialStore
from .errors import AuthorizationFailedError, StorageError, StreamRequestError
from .providers import ChatOptions, ProviderInterface
from .types import (
    AuthError,
    ChatMessage,
    Credential,
    RetryState,
    StreamDone,
    StreamError,
    StreamEvent,
    TokenChunk,
)
from .validation_cache import ValidationCache

lib_logger = logging.getLogger("scry_auth")

MAX_ATTEMPTS = 3
BACKOFF_DELAYS = (2, 4, 8)

AUTH_FAILED_MESSAGE = (
    "Authentication failed after {attempts} retries. "
    "Your credential has been removed; use /connect to sign in again."
)


def backoff_delay(attempt: int, delays: Sequence[float] = BACKOFF_DELAYS) -> float:
    """Delay before retry number attempt + 1."""
    return delays[min(attempt, len(delays) - 1)]


class StreamRetryCoordinator:
    """
    Runs one logical stream request with retry-on-authorization-failure.

    `sleep` is injectable so tests can record delays instead of waiting.
    Cancelling the task that iterates `run` while a backoff wait is pending
    raises CancelledError out of the wait before any further state change.
    """

    def __init__(
        self,
        provider: ProviderInterface,
        credential: Optional[Credential],
        client: httpx.AsyncClient,
        cache: ValidationCache,
        store: CredentialStore,
        options: ChatOptions,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_auth_failure: Optional[Callable[[str], None]] = None,
        max_attempts: int = MAX_ATTEMPTS,
        delays: Sequence[float] = BACKOFF_DELAYS,
    ):
        self.provider = provider
        self.credential = credential
        self.client = client
        self.cache = cache
        self.store = store
        self.options = options
        self._sleep = sleep
        self._on_auth_failure = on_auth_failure
        self.max_attempts = max_attempts
        self.delays = tuple(delays)

    @property
    def storage_key(self) -> str:
        return self.credential.storage_key if self.credential else self.provider.provider.value

    async def run(self, messages: List[ChatMessage]) -> AsyncIterator[StreamEvent]:
        """
        Yield TokenChunk events, then exactly one of StreamDone, AuthError or
        StreamError.
        """
        state = RetryState(provider=self.provider.provider, storage_key=self.storage_key)

        while True:
            try:
                async for text in self.provider.stream_chat(
                    self.credential, messages, self.options, self.client
                ):
                    yield TokenChunk(text)
            except AuthorizationFailedError as e:
                self.cache.invalidate(state.storage_key)
                self.provider.on_authorization_failure(self.credential)

                if state.attempt >= self.max_attempts:
                    lib_logger.error(
                        f"Authorization for '{state.storage_key}' failed after "
                        f"{state.attempt} retries: {e}"
                    )
                    await self._clear_credential(state.storage_key)
                    if self._on_auth_failure:
                        self._on_auth_failure(state.storage_key)
                    yield AuthError(
                        AUTH_FAILED_MESSAGE.format(attempts=state.attempt),
                        storage_key=state.storage_key,
                    )
                    return

                delay = backoff_delay(state.attempt, self.delays)
                state.attempt += 1
                lib_logger.warning(
                    f"Authorization failed for '{state.storage_key}' ({e.status_code}). "
                    f"Retrying in {delay}s (attempt {state.attempt}/{self.max_attempts})"
                )
                await self._sleep(delay)
                continue
            except StreamRequestError as e:
                lib_logger.warning(f"Stream for '{state.storage_key}' failed: {e}")
                yield StreamError(str(e))
                return

            yield StreamDone()
            return

    async def _clear_credential(self, storage_key: str) -> None:
        if self.credential is None:
            return
        try:
            await self.store.clear(storage_key)
        except StorageError as e:
            lib_logger.error(f"Failed to clear credential '{storage_key}': {e}")
