# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest
import pytest_asyncio


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from scry_auth.credential_store import CredentialStore
from scry_auth.types import Credential, CredentialKind, Provider
from scry_auth.validation_cache import ValidationCache


class SleepRecorder:
    """Stands in for asyncio.sleep; records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RequestLog:
    """MockTransport handler wrapper that remembers every request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]


def sse_body(*events: str) -> str:
    return "".join(f"{event}\n\n" for event in events)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / "auth.json")


@pytest.fixture
def cache() -> ValidationCache:
    return ValidationCache()


@pytest.fixture
def anthropic_key() -> Credential:
    return Credential(
        provider=Provider.ANTHROPIC,
        kind=CredentialKind.API_KEY,
        secret="sk-ant-test-key-123456",
    )


@pytest.fixture
def make_client():
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest_asyncio.fixture
async def saved_anthropic_key(store: CredentialStore, anthropic_key: Credential) -> Credential:
    await store.save(anthropic_key.storage_key, anthropic_key)
    return anthropic_key
