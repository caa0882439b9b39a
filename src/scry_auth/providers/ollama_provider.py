# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..errors import StreamRequestError
from ..stream_utils import iter_ndjson
from ..types import ChatMessage, Credential, Provider
from .provider_interface import ChatOptions, ProviderInterface

lib_logger = logging.getLogger("scry_auth")


class OllamaProvider(ProviderInterface):
    """
    Provider implementation for a local Ollama server.

    Ollama needs no credential, so it never takes part in validation or
    authorization retries. Streams are newline-delimited JSON.
    """

    provider = Provider.OLLAMA
    DEFAULT_MODEL = "llama3.2"
    REQUIRES_CREDENTIAL = False

    @classmethod
    def default_api_base(cls) -> str:
        return os.getenv("OLLAMA_HOST") or "http://localhost:11434"

    def check_api_key_format(self, api_key: str) -> Optional[str]:
        return "Ollama does not use API keys"

    async def build_auth_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> Dict[str, str]:
        return {}

    def validate_endpoint(self, credential: Optional[Credential]) -> Tuple[str, str]:
        return "GET", f"{self.api_base}/api/tags"

    def build_chat_request(
        self, messages: List[ChatMessage], options: ChatOptions
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": [m.to_api_format() for m in messages],
            "stream": True,
        }
        if options.temperature is not None:
            body["options"] = {"temperature": options.temperature}
        return f"{self.api_base}/api/chat", {}, body

    async def iter_stream_text(self, response: httpx.Response) -> AsyncIterator[str]:
        async for chunk in iter_ndjson(response):
            if chunk.get("error"):
                raise StreamRequestError(f"Ollama error: {chunk['error']}")
            content = (chunk.get("message") or {}).get("content")
            if content:
                yield content
            if chunk.get("done"):
                return
