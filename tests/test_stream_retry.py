# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import asyncio
import json
from typing import List

import httpx
import pytest

from conftest import RequestLog, sse_body
from scry_auth.credential_store import CredentialStore
from scry_auth.providers import AnthropicProvider, ChatOptions, CopilotProvider
from scry_auth.stream_retry import BACKOFF_DELAYS, MAX_ATTEMPTS, StreamRetryCoordinator
from scry_auth.types import (
    AuthError,
    ChatMessage,
    Credential,
    CredentialKind,
    Provider,
    StreamDone,
    StreamError,
    TokenChunk,
)
from scry_auth.validation_cache import ValidationCache

ANTHROPIC_OK = sse_body(
    'event: message_start\ndata: {"type": "message_start"}',
    'event: content_block_delta\ndata: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hel"}}',
    'event: content_block_delta\ndata: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}}',
    'event: message_stop\ndata: {"type": "message_stop"}',
)


def history() -> List[ChatMessage]:
    return [
        ChatMessage(role="system", content="Connected to Anthropic", is_banner=True),
        ChatMessage(role="user", content="hi"),
    ]


def coordinator(client, credential, cache, store, sleep, provider=None) -> StreamRetryCoordinator:
    return StreamRetryCoordinator(
        provider=provider or AnthropicProvider(),
        credential=credential,
        client=client,
        cache=cache,
        store=store,
        options=ChatOptions(model="claude-sonnet-4-5"),
        sleep=sleep,
    )


async def collect(coord: StreamRetryCoordinator, messages: List[ChatMessage]) -> list:
    return [event async for event in coord.run(messages)]


def test_retry_schedule_constants() -> None:
    assert MAX_ATTEMPTS == 3
    assert BACKOFF_DELAYS == (2, 4, 8)


@pytest.mark.asyncio
async def test_successful_stream_yields_chunks_then_done(
    make_client, cache: ValidationCache, store: CredentialStore, anthropic_key: Credential, sleep
) -> None:
    log = RequestLog(lambda r: httpx.Response(200, text=ANTHROPIC_OK))
    coord = coordinator(make_client(log), anthropic_key, cache, store, sleep)

    events = await collect(coord, history())

    assert events == [TokenChunk("Hel"), TokenChunk("lo"), StreamDone()]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_banner_messages_are_not_sent(
    make_client, cache: ValidationCache, store: CredentialStore, anthropic_key: Credential, sleep
) -> None:
    log = RequestLog(lambda r: httpx.Response(200, text=ANTHROPIC_OK))

    await collect(coordinator(make_client(log), anthropic_key, cache, store, sleep), history())

    body = json.loads(log.requests[0].content)
    assert body["messages"] == [{"role": "user", "content": "hi"}]
    assert "system" not in body


@pytest.mark.asyncio
async def test_persistent_auth_failure_is_terminal(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential, sleep
) -> None:
    log = RequestLog(lambda r: httpx.Response(401, json={"error": {"type": "authentication_error"}}))
    cache.mark_validated(saved_anthropic_key.storage_key)
    messages = history()
    before = list(messages)

    events = await collect(
        coordinator(make_client(log), saved_anthropic_key, cache, store, sleep), messages
    )

    assert len(log.requests) == 1 + MAX_ATTEMPTS
    assert sleep.delays == [2, 4, 8]
    assert len(events) == 1
    assert isinstance(events[0], AuthError)
    assert events[0].storage_key == "anthropic"
    assert await store.load_usable("anthropic") is None
    assert cache.is_validated("anthropic") is None
    assert messages == before


@pytest.mark.asyncio
async def test_transient_auth_failure_recovers(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential, sleep
) -> None:
    responses = [httpx.Response(401), httpx.Response(403), httpx.Response(200, text=ANTHROPIC_OK)]
    log = RequestLog(lambda r: responses.pop(0))

    events = await collect(
        coordinator(make_client(log), saved_anthropic_key, cache, store, sleep), history()
    )

    assert events == [TokenChunk("Hel"), TokenChunk("lo"), StreamDone()]
    assert sleep.delays == [2, 4]
    assert await store.load_usable("anthropic") is not None


@pytest.mark.asyncio
async def test_server_error_is_reported_once_without_retry(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential, sleep
) -> None:
    log = RequestLog(lambda r: httpx.Response(529, text="overloaded"))
    cache.mark_validated("anthropic")

    events = await collect(
        coordinator(make_client(log), saved_anthropic_key, cache, store, sleep), history()
    )

    assert len(events) == 1
    assert isinstance(events[0], StreamError)
    assert "529" in events[0].message
    assert len(log.requests) == 1
    assert sleep.delays == []
    assert cache.is_validated("anthropic") is True
    assert await store.load_usable("anthropic") is not None


@pytest.mark.asyncio
async def test_transport_error_is_stream_error(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential, sleep
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    events = await collect(
        coordinator(make_client(handler), saved_anthropic_key, cache, store, sleep), history()
    )

    assert len(events) == 1
    assert isinstance(events[0], StreamError)


@pytest.mark.asyncio
async def test_undecodable_body_is_stream_error(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential, sleep
) -> None:
    log = RequestLog(
        lambda r: httpx.Response(
            200,
            headers={"content-encoding": "gzip", "content-type": "text/event-stream"},
            stream=httpx.ByteStream(b"not gzip"),
        )
    )

    events = await collect(
        coordinator(make_client(log), saved_anthropic_key, cache, store, sleep), history()
    )

    assert len(events) == 1
    assert isinstance(events[0], StreamError)
    assert len(log.requests) == 1
    assert sleep.delays == []
    assert await store.load_usable("anthropic") is not None


@pytest.mark.asyncio
async def test_midstream_error_event_is_stream_error(
    make_client, cache: ValidationCache, store: CredentialStore, anthropic_key: Credential, sleep
) -> None:
    body = sse_body(
        'event: content_block_delta\ndata: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}}',
        'event: error\ndata: {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}',
    )
    client = make_client(lambda r: httpx.Response(200, text=body))

    events = await collect(coordinator(client, anthropic_key, cache, store, sleep), history())

    assert events[0] == TokenChunk("Hi")
    assert isinstance(events[1], StreamError)
    assert "overloaded_error" in events[1].message


@pytest.mark.asyncio
async def test_cancel_during_backoff_leaves_state_untouched(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential
) -> None:
    log = RequestLog(lambda r: httpx.Response(401))
    waits: List[float] = []
    second_wait_started = asyncio.Event()

    async def blocking_sleep(delay: float) -> None:
        waits.append(delay)
        if delay == 4:
            second_wait_started.set()
            await asyncio.Event().wait()

    coord = coordinator(make_client(log), saved_anthropic_key, cache, store, blocking_sleep)
    events: list = []

    async def consume() -> None:
        async for event in coord.run(history()):
            events.append(event)

    task = asyncio.create_task(consume())
    await second_wait_started.wait()
    cache_before_cancel = cache.is_validated("anthropic")

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert waits == [2, 4]
    assert len(log.requests) == 2
    assert events == []
    assert await store.load_usable("anthropic") is not None
    assert cache.is_validated("anthropic") == cache_before_cancel


@pytest.mark.asyncio
async def test_copilot_auth_failure_drops_api_token(
    make_client, cache: ValidationCache, store: CredentialStore, sleep
) -> None:
    token_fetches: List[int] = []
    chat_statuses = [401, 200]
    ok_body = sse_body(
        'data: {"choices": [{"delta": {"content": "ok"}}]}',
        'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}',
        "data: [DONE]",
    )

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.github.com":
            token_fetches.append(1)
            return httpx.Response(
                200, json={"token": f"copilot-{len(token_fetches)}", "expires_at": 9999999999}
            )
        status = chat_statuses.pop(0)
        if status != 200:
            return httpx.Response(status)
        assert request.headers["authorization"] == "Bearer copilot-2"
        return httpx.Response(200, text=ok_body)

    credential = Credential(
        provider=Provider.GITHUB_COPILOT, kind=CredentialKind.OAUTH, secret="gho_github_token"
    )
    coord = coordinator(
        make_client(handler), credential, cache, store, sleep, provider=CopilotProvider()
    )

    events = await collect(coord, history())

    assert events == [TokenChunk("ok"), StreamDone()]
    assert len(token_fetches) == 2
    assert sleep.delays == [2]
