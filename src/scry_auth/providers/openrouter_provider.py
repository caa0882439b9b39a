# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..errors import StreamRequestError
from ..stream_utils import iter_openai_sse_text
from ..types import ChatMessage, Credential, Provider
from .provider_interface import ChatOptions, ProviderInterface

lib_logger = logging.getLogger("scry_auth")

APP_REFERER = "https://github.com/scry-cli/scry-cli"
APP_TITLE = "scry-cli"


class OpenRouterProvider(ProviderInterface):
    """
    Provider implementation for the OpenRouter API.
    """

    provider = Provider.OPENROUTER
    DEFAULT_MODEL = "anthropic/claude-sonnet-4.5"
    API_KEY_ENV_VAR = "OPENROUTER_API_KEY"
    API_KEY_PREFIX = "sk-or-"

    @classmethod
    def default_api_base(cls) -> str:
        return "https://openrouter.ai/api/v1"

    async def build_auth_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        if credential is None:
            raise StreamRequestError("Not connected to OpenRouter")
        return {
            "Authorization": f"Bearer {credential.secret}",
            "HTTP-Referer": APP_REFERER,
            "X-Title": APP_TITLE,
        }

    def validate_endpoint(self, credential: Optional[Credential]) -> Tuple[str, str]:
        # Key info endpoint; answers 401 for unknown keys
        return "GET", f"{self.api_base}/key"

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
        return f"{self.api_base}/chat/completions", {}, body

    async def iter_stream_text(self, response: httpx.Response) -> AsyncIterator[str]:
        async for text in iter_openai_sse_text(response):
            yield text
