# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import httpx
import pytest

from conftest import sse_body
from scry_auth.errors import AuthorizationFailedError, StreamRequestError
from scry_auth.providers import (
    AnthropicProvider,
    ChatOptions,
    CopilotProvider,
    OllamaProvider,
    OpenRouterProvider,
    get_available_providers,
    get_provider,
)
from scry_auth.types import ChatMessage, Credential, CredentialKind, Provider
from scry_auth.utils import format_credential_for_display


def test_registry_covers_every_provider() -> None:
    assert sorted(get_available_providers()) == sorted(p.value for p in Provider)
    assert isinstance(get_provider("openrouter"), OpenRouterProvider)
    with pytest.raises(ValueError):
        get_provider("nope")


def test_anthropic_moves_system_prompt_out_of_messages() -> None:
    url, _, body = AnthropicProvider().build_chat_request(
        [
            ChatMessage(role="system", content="be brief"),
            ChatMessage(role="user", content="hi"),
        ],
        ChatOptions(model="claude-sonnet-4-5", max_tokens=None),
    )

    assert url == "https://api.anthropic.com/v1/messages"
    assert body["system"] == "be brief"
    assert body["messages"] == [{"role": "user", "content": "hi"}]
    assert body["max_tokens"] == 4096
    assert body["stream"] is True


def test_key_format_checks() -> None:
    assert AnthropicProvider().check_api_key_format("sk-ant-abc") is None
    assert AnthropicProvider().check_api_key_format("sk-abc") is not None
    assert OpenRouterProvider().check_api_key_format("sk-or-v1-abc") is None
    assert OpenRouterProvider().check_api_key_format("sk or") is not None
    assert CopilotProvider().check_api_key_format("anything") is not None


def test_capabilities() -> None:
    assert AnthropicProvider().supports_pkce
    assert not AnthropicProvider().supports_device_flow
    assert CopilotProvider().supports_device_flow
    assert not OpenRouterProvider().supports_pkce
    assert not OllamaProvider.REQUIRES_CREDENTIAL
    assert AnthropicProvider().token_exchange_endpoint() == "https://console.anthropic.com/v1/oauth/token"
    assert OpenRouterProvider().token_exchange_endpoint() is None


@pytest.mark.asyncio
async def test_openrouter_headers_and_validation_endpoint(make_client) -> None:
    provider = OpenRouterProvider()
    credential = Credential(
        provider=Provider.OPENROUTER, kind=CredentialKind.API_KEY, secret="sk-or-v1-secret"
    )

    headers = await provider.build_auth_headers(credential, make_client(lambda r: httpx.Response(200)))

    assert headers["Authorization"] == "Bearer sk-or-v1-secret"
    assert headers["X-Title"] == "scry-cli"
    assert provider.validate_endpoint(credential) == ("GET", "https://openrouter.ai/api/v1/key")


@pytest.mark.asyncio
async def test_openrouter_stream(make_client) -> None:
    body = sse_body(
        ": OPENROUTER PROCESSING",
        'data: {"choices": [{"delta": {"content": "a"}}]}',
        'data: {"choices": [{"delta": {"content": "b"}}]}',
        "data: [DONE]",
    )
    credential = Credential(
        provider=Provider.OPENROUTER, kind=CredentialKind.API_KEY, secret="sk-or-v1-secret"
    )
    client = make_client(lambda r: httpx.Response(200, text=body))

    chunks = [
        text
        async for text in OpenRouterProvider().stream_chat(
            credential, [ChatMessage(role="user", content="hi")], ChatOptions(model="m"), client
        )
    ]

    assert chunks == ["a", "b"]


@pytest.mark.asyncio
async def test_ollama_ndjson_stream_without_credential(make_client) -> None:
    body = (
        '{"message": {"role": "assistant", "content": "Hel"}, "done": false}\n'
        '{"message": {"role": "assistant", "content": "lo"}, "done": false}\n'
        '{"message": {"role": "assistant", "content": ""}, "done": true}\n'
    )
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=body)

    provider = OllamaProvider(api_base="http://gpu-box:11434/")
    chunks = [
        text
        async for text in provider.stream_chat(
            None, [ChatMessage(role="user", content="hi")], ChatOptions(model="llama3.2"), make_client(handler)
        )
    ]

    assert chunks == ["Hel", "lo"]
    assert str(seen[0].url) == "http://gpu-box:11434/api/chat"
    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_ollama_error_line(make_client) -> None:
    client = make_client(lambda r: httpx.Response(200, text='{"error": "model not found"}\n'))

    with pytest.raises(StreamRequestError):
        async for _ in OllamaProvider().stream_chat(
            None, [ChatMessage(role="user", content="hi")], ChatOptions(model="x"), client
        ):
            pass


@pytest.mark.asyncio
async def test_authorization_status_raises_authorization_failed(make_client) -> None:
    credential = Credential(
        provider=Provider.OPENROUTER, kind=CredentialKind.API_KEY, secret="sk-or-v1-secret"
    )
    client = make_client(lambda r: httpx.Response(403, text="forbidden"))

    with pytest.raises(AuthorizationFailedError) as exc_info:
        async for _ in OpenRouterProvider().stream_chat(
            credential, [ChatMessage(role="user", content="hi")], ChatOptions(model="m"), client
        ):
            pass
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_copilot_caches_api_token_until_failure(make_client) -> None:
    fetches = []

    def handler(request: httpx.Request) -> httpx.Response:
        fetches.append(request)
        return httpx.Response(200, json={"token": "tid=abc", "expires_at": 9999999999})

    provider = CopilotProvider()
    client = make_client(handler)
    credential = Credential(
        provider=Provider.GITHUB_COPILOT, kind=CredentialKind.OAUTH, secret="gho_github_token"
    )

    first = await provider.build_auth_headers(credential, client)
    await provider.build_auth_headers(credential, client)
    provider.on_authorization_failure(credential)
    await provider.build_auth_headers(credential, client)

    assert first["Authorization"] == "Bearer tid=abc"
    assert first["Copilot-Integration-Id"] == "vscode-chat"
    assert len(fetches) == 2


@pytest.mark.asyncio
async def test_copilot_rejected_github_token_is_authorization_failure(make_client) -> None:
    credential = Credential(
        provider=Provider.GITHUB_COPILOT, kind=CredentialKind.OAUTH, secret="gho_revoked"
    )

    with pytest.raises(AuthorizationFailedError):
        await CopilotProvider().build_auth_headers(
            credential, make_client(lambda r: httpx.Response(401))
        )


def test_secrets_are_masked_for_display() -> None:
    assert format_credential_for_display("sk-ant-api03-abcdef123456") == "...123456"
    assert format_credential_for_display("short") == "..."
