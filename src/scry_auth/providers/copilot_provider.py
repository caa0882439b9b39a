# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/scry_auth/providers/copilot_provider.py
"""
GitHub Copilot provider.

Copilot uses a two-token system:
1. GitHub OAuth token (long-lived, obtained through the device flow and
   stored as the credential secret)
2. Copilot API token (short-lived, ~30 min, exchanged on demand and only
   cached in memory)

The Copilot API token can be revoked or rotated on GitHub's side at any
time, so an authorization failure drops the cached token and the next
attempt exchanges a fresh one.
"""

import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..errors import StreamRequestError
from ..stream_utils import iter_openai_sse_text
from ..types import ChatMessage, Credential, Provider
from ..utils import format_credential_for_display
from .provider_interface import (
    ChatOptions,
    DeviceFlowEndpoints,
    ProviderInterface,
    raise_for_status,
)

lib_logger = logging.getLogger("scry_auth")

# GitHub Copilot OAuth Client ID (from VS Code Copilot extension)
CLIENT_ID = "Iv1.b507a08c87ecfe98"
DEVICE_CODE_URL = "https://github.com/login/device/code"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
COPILOT_API_KEY_URL = "https://api.github.com/copilot_internal/v2/token"
SCOPE = "read:user"

# Headers that mimic the official Copilot client
COPILOT_HEADERS = {
    "User-Agent": "GitHubCopilotChat/0.32.4",
    "Editor-Version": "vscode/1.105.1",
    "Editor-Plugin-Version": "copilot-chat/0.32.4",
    "Copilot-Integration-Id": "vscode-chat",
}

# Refresh the Copilot API token this long before it expires
REFRESH_EXPIRY_BUFFER_SECONDS = 5 * 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 30 * 60


class CopilotProvider(ProviderInterface):
    provider = Provider.GITHUB_COPILOT
    DEFAULT_MODEL = "claude-sonnet-4.5"

    def __init__(self, api_base: Optional[str] = None):
        super().__init__(api_base)
        # storage_key -> (copilot api token, expires_at unix seconds)
        self._api_tokens: Dict[str, Tuple[str, float]] = {}

    @classmethod
    def default_api_base(cls) -> str:
        return "https://api.githubcopilot.com"

    def device_flow_endpoints(self) -> Optional[DeviceFlowEndpoints]:
        return DeviceFlowEndpoints(
            client_id=CLIENT_ID,
            device_code_url=DEVICE_CODE_URL,
            access_token_url=ACCESS_TOKEN_URL,
            scope=SCOPE,
        )

    def token_exchange_endpoint(self) -> Optional[str]:
        return ACCESS_TOKEN_URL

    def check_api_key_format(self, api_key: str) -> Optional[str]:
        return "GitHub Copilot only supports device-code sign-in"

    # =========================================================================
    # COPILOT API TOKEN
    # =========================================================================

    def _github_headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {credential.secret}",
            **COPILOT_HEADERS,
        }

    def _cached_api_token(self, storage_key: str) -> Optional[str]:
        cached = self._api_tokens.get(storage_key)
        if cached and cached[1] > time.time() + REFRESH_EXPIRY_BUFFER_SECONDS:
            return cached[0]
        return None

    async def _get_api_token(self, credential: Credential, client: httpx.AsyncClient) -> str:
        """Exchange the GitHub OAuth token for a Copilot API token."""
        token = self._cached_api_token(credential.storage_key)
        if token:
            return token

        lib_logger.debug(
            f"Fetching Copilot API token for '{credential.storage_key}' "
            f"({format_credential_for_display(credential.secret)})"
        )
        try:
            response = await client.get(
                COPILOT_API_KEY_URL, headers=self._github_headers(credential)
            )
        except httpx.HTTPError as e:
            raise StreamRequestError(f"Failed to get Copilot token: {e}") from e

        if not response.is_success:
            raise_for_status(response.status_code, response.text, self.provider)

        try:
            token_data = response.json()
            token = token_data["token"]
        except (ValueError, KeyError) as e:
            raise StreamRequestError(f"Failed to parse Copilot token response: {e}") from e

        expires_at = float(
            token_data.get("expires_at") or time.time() + DEFAULT_TOKEN_LIFETIME_SECONDS
        )
        self._api_tokens[credential.storage_key] = (token, expires_at)
        return token

    def on_authorization_failure(self, credential: Optional[Credential]) -> None:
        if credential and self._api_tokens.pop(credential.storage_key, None):
            lib_logger.info(
                f"Dropped Copilot API token for '{credential.storage_key}' after authorization failure"
            )

    # =========================================================================
    # PROVIDER INTERFACE
    # =========================================================================

    async def build_auth_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        if credential is None:
            raise StreamRequestError("Not connected to GitHub Copilot")
        token = await self._get_api_token(credential, client)
        return {
            "Authorization": f"Bearer {token}",
            "Copilot-Integration-Id": COPILOT_HEADERS["Copilot-Integration-Id"],
            "Editor-Version": COPILOT_HEADERS["Editor-Version"],
        }

    def validate_endpoint(self, credential: Optional[Credential]) -> Tuple[str, str]:
        return "GET", COPILOT_API_KEY_URL

    async def build_validation_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        if credential is None:
            raise StreamRequestError("Not connected to GitHub Copilot")
        return self._github_headers(credential)

    def build_chat_request(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": [m.to_api_format() for m in messages],
            "stream": True,
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        return f"{self.api_base}/chat/completions", {"Accept": "text/event-stream"}, body

    async def iter_stream_text(self, response: httpx.Response) -> AsyncIterator[str]:
        async for text in iter_openai_sse_text(response):
            yield text
