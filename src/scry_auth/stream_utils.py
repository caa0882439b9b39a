# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from .errors import StreamRequestError

lib_logger = logging.getLogger("scry_auth")


async def iter_sse_events(
    response: httpx.Response,
) -> AsyncIterator[Tuple[Optional[str], str]]:
    """
    Yield (event name, data) pairs from a Server-Sent Events body.

    Comment lines (": keep-alive") are skipped. The event name is reset
    after each data line, since providers send one data line per event.
    """
    current_event: Optional[str] = None
    async for raw_line in response.aiter_lines():
        line = raw_line.strip()
        if not line or line.startswith(":"):
            continue
        if line.startswith("event:"):
            current_event = line[6:].strip()
            continue
        if line.startswith("data:"):
            yield current_event, line[5:].strip()
            current_event = None


def parse_json_payload(data: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        lib_logger.debug(f"Skipping non-JSON stream payload: {data[:100]}")
        return None
    return parsed if isinstance(parsed, dict) else None


async def iter_openai_sse_text(response: httpx.Response) -> AsyncIterator[str]:
    """
    Yield delta.content from an OpenAI-compatible chat completion stream.

    Ends on "[DONE]" or the first choice carrying a finish_reason.
    """
    async for _, data in iter_sse_events(response):
        if data == "[DONE]":
            return

        chunk = parse_json_payload(data)
        if chunk is None:
            continue

        if chunk.get("error"):
            error = chunk["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise StreamRequestError(f"Stream error: {message}")

        finished = False
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}
            content = delta.get("content")
            if content:
                yield content
            if choice.get("finish_reason"):
                finished = True
        if finished:
            return


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """Yield one JSON object per non-empty line."""
    async for raw_line in response.aiter_lines():
        line = raw_line.strip()
        if not line:
            continue
        chunk = parse_json_payload(line)
        if chunk is not None:
            yield chunk
