# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
import logging

import httpx

from ..errors import (
    AuthorizationFailedError,
    StreamRequestError,
    is_authorization_status,
)
from ..types import AnthropicAuthMethod, ChatMessage, Credential, Provider

lib_logger = logging.getLogger("scry_auth")

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
MAX_ERROR_BODY_CHARS = 500


@dataclass(frozen=True)
class OAuthEndpoints:
    """Static PKCE configuration of a provider."""

    client_id: str
    authorize_urls: Dict[AnthropicAuthMethod, str]
    token_url: str
    redirect_uri: str
    scopes: str
    default_method: AnthropicAuthMethod
    api_key_url: Optional[str] = None


@dataclass(frozen=True)
class DeviceFlowEndpoints:
    """Static device authorization (RFC 8628) configuration of a provider."""

    client_id: str
    device_code_url: str
    access_token_url: str
    scope: Optional[str] = None


@dataclass(frozen=True)
class ChatOptions:
    model: str
    temperature: Optional[float] = DEFAULT_TEMPERATURE
    max_tokens: Optional[int] = DEFAULT_MAX_TOKENS


class ProviderInterface(ABC):
    """
    Capability interface for one LLM provider.

    Everything provider-specific (header names, endpoints, request and
    stream shapes, key formats) lives behind this interface so the
    validator and the retry coordinator never branch on the provider.
    """

    provider: Provider
    DEFAULT_MODEL: str = ""
    API_KEY_ENV_VAR: Optional[str] = None
    API_KEY_PREFIX: Optional[str] = None
    REQUIRES_CREDENTIAL: bool = True

    def __init__(self, api_base: Optional[str] = None):
        self.api_base = (api_base or self.default_api_base()).rstrip("/")

    @classmethod
    @abstractmethod
    def default_api_base(cls) -> str:
        pass

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================

    @abstractmethod
    async def build_auth_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        """
        Headers that authenticate a chat request with this credential.

        Raises:
            AuthorizationFailedError: a derived token could not be obtained
                because the credential was refused
            StreamRequestError: any other failure while building headers
        """
        pass

    @abstractmethod
    def validate_endpoint(self, credential: Optional[Credential]) -> Tuple[str, str]:
        """The (method, url) of the cheapest authenticated request."""
        pass

    async def build_validation_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        return await self.build_auth_headers(credential, client)

    def token_exchange_endpoint(self) -> Optional[str]:
        """Token endpoint of the provider's OAuth flow, if any."""
        config = self.oauth_endpoints()
        return config.token_url if config else None

    def oauth_endpoints(self) -> Optional[OAuthEndpoints]:
        """PKCE configuration, or None when the provider has no browser flow."""
        return None

    def device_flow_endpoints(self) -> Optional[DeviceFlowEndpoints]:
        """Device-code configuration, or None when the provider has none."""
        return None

    @property
    def supports_pkce(self) -> bool:
        return self.oauth_endpoints() is not None

    @property
    def supports_device_flow(self) -> bool:
        return self.device_flow_endpoints() is not None

    def check_api_key_format(self, api_key: str) -> Optional[str]:
        """
        Check a manually entered key before it is saved or used.

        Returns:
            None if the key looks usable, otherwise a reason for the user
        """
        if not api_key:
            return "API key is empty"
        if any(ch.isspace() for ch in api_key):
            return "API key must not contain whitespace"
        if self.API_KEY_PREFIX and not api_key.startswith(self.API_KEY_PREFIX):
            return (
                f"{self.provider.display_name} API keys start with "
                f"'{self.API_KEY_PREFIX}'"
            )
        return None

    def on_authorization_failure(self, credential: Optional[Credential]) -> None:
        """Drop any short-lived token derived from the credential."""

    # =========================================================================
    # CHAT
    # =========================================================================

    @abstractmethod
    def build_chat_request(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        """Returns (url, extra headers, json body) for a streaming request."""
        pass

    @abstractmethod
    def iter_stream_text(self, response: httpx.Response) -> AsyncIterator[str]:
        """
        Yield text chunks from an open streaming response.

        Raises:
            StreamRequestError: the provider reported an error mid-stream
        """
        pass

    async def stream_chat(
        self,
        credential: Optional[Credential],
        messages: List[ChatMessage],
        options: ChatOptions,
        client: httpx.AsyncClient,
    ) -> AsyncIterator[str]:
        """
        Send one streaming chat request and yield its text chunks.

        Banner messages are dropped before the request is built.

        Raises:
            AuthorizationFailedError: the provider answered 401/403
            StreamRequestError: transport failure, other non-2xx status, or
                a malformed/errored stream
        """
        payload_messages = [m for m in messages if not m.is_banner]
        url, extra_headers, body = self.build_chat_request(payload_messages, options)
        headers = {
            "Content-Type": "application/json",
            **extra_headers,
            **await self.build_auth_headers(credential, client),
        }

        try:
            async with client.stream("POST", url, json=body, headers=headers) as response:
                if not response.is_success:
                    error_body = (await response.aread()).decode("utf-8", "replace")
                    raise_for_status(response.status_code, error_body, self.provider)

                async for text in self.iter_stream_text(response):
                    if text:
                        yield text
        except httpx.HTTPError as e:
            raise StreamRequestError(
                f"{self.provider.display_name} request failed: {e}"
            ) from e


def raise_for_status(status_code: int, body: str, provider: Provider) -> None:
    """Map a non-2xx response onto the internal streaming errors."""
    message = body[:MAX_ERROR_BODY_CHARS]
    if is_authorization_status(status_code):
        raise AuthorizationFailedError(status_code, message)
    raise StreamRequestError(
        f"{provider.display_name} API error ({status_code}): {message}",
        status_code=status_code,
    )
