# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Chat session wiring.

SessionContext is the explicit per-run context object: it owns the
credential store, the validation cache, the HTTP client and the sleep used
for backoff. It is created when the CLI starts a session and torn down when
the session ends, which is what makes the cache "process lifetime" without a
module-level global.

ChatSession owns the conversation history and the active credential, and
drives connect -> validate -> stream for one provider.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import httpx

from .credential_store import CredentialStore
from .errors import CredentialNotFoundError, StorageError
from .providers import ChatOptions, ProviderInterface, get_provider
from .stream_retry import StreamRetryCoordinator
from .types import (
    ChatMessage,
    Credential,
    Provider,
    StreamDone,
    StreamEvent,
    TokenChunk,
    make_storage_key,
)
from .validation_cache import ValidationCache
from .validator import TokenValidator

lib_logger = logging.getLogger("scry_auth")

DEFAULT_HTTP_TIMEOUT = 60.0


class SessionContext:
    """Shared state for every component of one running session."""

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        cache: Optional[ValidationCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        self.store = store or CredentialStore()
        self.cache = cache if cache is not None else ValidationCache()
        self.sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=http_timeout)

    @property
    def validator(self) -> TokenValidator:
        return TokenValidator(self.client, self.cache, self.store)

    async def aclose(self) -> None:
        self.cache.clear_all()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "SessionContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class ChatSession:
    """
    One conversation with one provider.

    History is only ever appended to: the user's prompt when it is sent and
    the assistant's reply once the stream completes. Failed, cancelled and
    retried streams leave it as it was.
    """

    def __init__(
        self,
        provider: Provider,
        context: SessionContext,
        model: Optional[str] = None,
        api_base: Optional[str] = None,
        plugin: Optional[ProviderInterface] = None,
    ):
        self.provider = provider
        self.context = context
        self.plugin = plugin or get_provider(provider, api_base)
        self.model = model
        self.storage_key = make_storage_key(provider)
        self.credential: Optional[Credential] = None
        self.connected = False
        self.save_error: Optional[str] = None
        self.history: List[ChatMessage] = []
        self._active_task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def active_model(self) -> str:
        if self.model:
            return self.model
        if self.credential and self.credential.model:
            return self.credential.model
        return self.plugin.DEFAULT_MODEL

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def connect(self, credential: Optional[Credential] = None) -> None:
        """
        Connect using a freshly negotiated credential or the stored one.

        A fresh credential is saved first. If saving fails the reason is
        kept in save_error and the credential is still used for this run.
        A stored credential goes through the validator's cache/store policy.

        Raises:
            CredentialNotFoundError: nothing usable is stored
            ReconnectRequiredError: the stored credential was refused
        """
        if not self.plugin.REQUIRES_CREDENTIAL:
            self._mark_connected()
            return

        if credential is not None:
            credential.storage_key = self.storage_key
            if self.model and not credential.model:
                credential.model = self.model
            self.save_error = None
            try:
                await self.context.store.save(self.storage_key, credential)
            except StorageError as e:
                self.save_error = str(e)
                lib_logger.warning(
                    f"Could not save credential for '{self.storage_key}', "
                    f"using it for this run only: {e}"
                )
        else:
            credential = await self.context.store.load_usable(self.storage_key)
            if credential is None:
                raise CredentialNotFoundError(self.storage_key)

        await self.context.validator.ensure_usable(credential, self.plugin)
        self.credential = credential
        self._mark_connected()

    def _mark_connected(self) -> None:
        self.connected = True
        self.history.append(
            ChatMessage(
                role="system",
                content=f"Connected to {self.provider.display_name} ({self.active_model})",
                is_banner=True,
            )
        )
        lib_logger.info(f"Session connected to {self.provider.display_name}")

    def _on_auth_failure(self, storage_key: str) -> None:
        self.credential = None
        self.connected = False

    async def disconnect(self) -> None:
        """End the connection. The stored credential is kept."""
        self.cancel()
        self.credential = None
        self.connected = False
        lib_logger.info(f"Session disconnected from {self.provider.display_name}")

    async def logout(self) -> None:
        """Disconnect and forget the stored credential."""
        await self.disconnect()
        self.context.cache.invalidate(self.storage_key)
        await self.context.store.clear(self.storage_key)

    # =========================================================================
    # CHAT
    # =========================================================================

    def _coordinator(self) -> StreamRetryCoordinator:
        return StreamRetryCoordinator(
            provider=self.plugin,
            credential=self.credential,
            client=self.context.client,
            cache=self.context.cache,
            store=self.context.store,
            options=ChatOptions(model=self.active_model),
            sleep=self.context.sleep,
            on_auth_failure=self._on_auth_failure,
        )

    async def send(self, prompt: str) -> AsyncIterator[StreamEvent]:
        """
        Append the prompt and stream the reply as events.

        The assistant reply is appended to history only after StreamDone.
        """
        if not self.connected:
            raise CredentialNotFoundError(self.storage_key)

        self.history.append(ChatMessage(role="user", content=prompt))
        reply_parts: List[str] = []

        async for event in self._coordinator().run(list(self.history)):
            if isinstance(event, TokenChunk):
                reply_parts.append(event.text)
            elif isinstance(event, StreamDone):
                self.history.append(ChatMessage(role="assistant", content="".join(reply_parts)))
            yield event

    async def run_turn(
        self,
        prompt: str,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
    ) -> List[StreamEvent]:
        """
        Run `send` as a cancellable task and collect its events.

        After `cancel()` the events received so far are returned; no
        AuthError is produced and no credential state changes.
        """
        events: List[StreamEvent] = []

        async def consume() -> None:
            async for event in self.send(prompt):
                events.append(event)
                if on_event:
                    on_event(event)

        self._cancel_requested = False
        self._active_task = asyncio.ensure_future(consume())
        try:
            await self._active_task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self._active_task.cancel()
                raise
            lib_logger.info("Stream cancelled by user")
        finally:
            self._active_task = None
        return events

    def cancel(self) -> bool:
        """Cancel the in-flight stream, including a pending backoff wait."""
        if self._active_task is None or self._active_task.done():
            return False
        self._cancel_requested = True
        self._active_task.cancel()
        return True
