# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/scry_auth/providers/anthropic_provider.py

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..errors import StreamRequestError
from ..stream_utils import parse_json_payload, iter_sse_events
from ..types import AnthropicAuthMethod, ChatMessage, Credential, CredentialKind, Provider
from .provider_interface import ChatOptions, OAuthEndpoints, ProviderInterface

lib_logger = logging.getLogger("scry_auth")

ANTHROPIC_VERSION = "2023-06-01"
OAUTH_BETA_FLAG = "oauth-2025-04-20"

# OAuth constants (public client id used by native CLI clients)
CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
AUTH_URL_CLAUDE = "https://claude.ai/oauth/authorize"
AUTH_URL_CONSOLE = "https://console.anthropic.com/oauth/authorize"
TOKEN_URL = "https://console.anthropic.com/v1/oauth/token"
REDIRECT_URI = "https://console.anthropic.com/oauth/code/callback"
API_KEY_URL = "https://api.anthropic.com/api/oauth/claude_cli/create_api_key"
SCOPES = "org:create_api_key user:profile user:inference"


class AnthropicProvider(ProviderInterface):
    """
    Provider implementation for the Anthropic Messages API.

    Accepts both API keys (x-api-key) and OAuth bearer tokens obtained
    through the claude.ai PKCE flow; the latter need the OAuth beta flag.
    """

    provider = Provider.ANTHROPIC
    DEFAULT_MODEL = "claude-sonnet-4-5"
    API_KEY_ENV_VAR = "ANTHROPIC_API_KEY"
    API_KEY_PREFIX = "sk-ant-"

    @classmethod
    def default_api_base(cls) -> str:
        return "https://api.anthropic.com/v1"

    def oauth_endpoints(self) -> Optional[OAuthEndpoints]:
        return OAuthEndpoints(
            client_id=CLIENT_ID,
            authorize_urls={
                AnthropicAuthMethod.CLAUDE_PRO_MAX: AUTH_URL_CLAUDE,
                AnthropicAuthMethod.CREATE_API_KEY: AUTH_URL_CONSOLE,
            },
            token_url=TOKEN_URL,
            redirect_uri=REDIRECT_URI,
            scopes=SCOPES,
            default_method=AnthropicAuthMethod.CLAUDE_PRO_MAX,
            api_key_url=API_KEY_URL,
        )

    async def build_auth_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        if credential is None:
            raise StreamRequestError("Not connected to Anthropic")
        if credential.kind == CredentialKind.OAUTH:
            return {
                "Authorization": f"Bearer {credential.secret}",
                "anthropic-beta": OAUTH_BETA_FLAG,
                "anthropic-version": ANTHROPIC_VERSION,
            }
        return {
            "x-api-key": credential.secret,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def validate_endpoint(self, credential: Optional[Credential]) -> Tuple[str, str]:
        return "GET", f"{self.api_base}/models?limit=1"

    def build_chat_request(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        system, anthropic_messages = convert_messages(messages)
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": anthropic_messages,
            # Anthropic requires max_tokens
            "max_tokens": options.max_tokens or 4096,
            "stream": True,
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if system:
            body["system"] = system
        return f"{self.api_base}/messages", {"Accept": "text/event-stream"}, body

    async def iter_stream_text(self, response: httpx.Response) -> AsyncIterator[str]:
        async for event, data in iter_sse_events(response):
            if event == "content_block_delta":
                chunk = parse_json_payload(data) or {}
                delta = chunk.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield delta["text"]
            elif event == "message_stop":
                return
            elif event == "error":
                error = (parse_json_payload(data) or {}).get("error") or {}
                raise StreamRequestError(
                    f"Stream error: {error.get('type', 'unknown')} - "
                    f"{error.get('message', data)}"
                )
            # message_start, content_block_start/stop, message_delta, ping


def convert_messages(messages: List[ChatMessage]) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """
    Split messages into Anthropic's separate system field and the
    user/assistant message list.
    """
    system_parts: List[str] = []
    converted: List[Dict[str, str]] = []
    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
        else:
            converted.append(message.to_api_format())
    return ("\n\n".join(system_parts) or None), converted
