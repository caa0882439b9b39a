# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import httpx
import pytest

from conftest import RequestLog
from scry_auth.credential_store import CredentialStore
from scry_auth.errors import ReconnectRequiredError
from scry_auth.types import Credential, CredentialKind, Provider, ValidationOutcome
from scry_auth.validation_cache import ValidationCache
from scry_auth.validator import TokenValidator, classify_status


@pytest.mark.parametrize(
    "status, outcome",
    [
        (200, ValidationOutcome.VALID),
        (204, ValidationOutcome.VALID),
        (429, ValidationOutcome.VALID),
        (401, ValidationOutcome.INVALID),
        (403, ValidationOutcome.INVALID),
        (500, ValidationOutcome.INCONCLUSIVE),
        (503, ValidationOutcome.INCONCLUSIVE),
        (404, ValidationOutcome.INCONCLUSIVE),
    ],
)
def test_classify_status(status: int, outcome: ValidationOutcome) -> None:
    assert classify_status(status) == outcome


@pytest.mark.asyncio
async def test_validate_uses_provider_endpoint_and_key_header(
    make_client, anthropic_key: Credential
) -> None:
    log = RequestLog(lambda request: httpx.Response(200, json={"data": []}))
    validator = TokenValidator(make_client(log))

    outcome = await validator.validate(anthropic_key)

    assert outcome == ValidationOutcome.VALID
    request = log.requests[0]
    assert request.method == "GET"
    assert str(request.url) == "https://api.anthropic.com/v1/models?limit=1"
    assert request.headers["x-api-key"] == anthropic_key.secret


@pytest.mark.asyncio
async def test_oauth_credential_validates_with_bearer_and_beta_flag(make_client) -> None:
    log = RequestLog(lambda request: httpx.Response(200, json={}))
    credential = Credential(
        provider=Provider.ANTHROPIC, kind=CredentialKind.OAUTH, secret="oauth-token-abcdef"
    )

    await TokenValidator(make_client(log)).validate(credential)

    headers = log.requests[0].headers
    assert headers["authorization"] == "Bearer oauth-token-abcdef"
    assert headers["anthropic-beta"] == "oauth-2025-04-20"
    assert "x-api-key" not in headers


@pytest.mark.asyncio
async def test_transport_error_is_inconclusive(make_client, anthropic_key: Credential) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = await TokenValidator(make_client(handler)).validate(anthropic_key)

    assert outcome == ValidationOutcome.INCONCLUSIVE


@pytest.mark.asyncio
async def test_undecodable_response_is_inconclusive(make_client, anthropic_key: Credential) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, headers={"content-encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip")
        )

    outcome = await TokenValidator(make_client(handler)).validate(anthropic_key)

    assert outcome == ValidationOutcome.INCONCLUSIVE


@pytest.mark.asyncio
async def test_cached_credential_skips_network(
    make_client, cache: ValidationCache, anthropic_key: Credential
) -> None:
    log = RequestLog(lambda request: httpx.Response(200, json={}))
    validator = TokenValidator(make_client(log), cache)

    await validator.ensure_usable(anthropic_key)
    await validator.ensure_usable(anthropic_key)

    assert len(log.requests) == 1
    assert cache.is_validated(anthropic_key.storage_key) is True


@pytest.mark.asyncio
async def test_rate_limited_validation_marks_cache(
    make_client, cache: ValidationCache, anthropic_key: Credential
) -> None:
    validator = TokenValidator(make_client(lambda r: httpx.Response(429)), cache)

    assert await validator.ensure_usable(anthropic_key) == ValidationOutcome.VALID
    assert cache.is_validated(anthropic_key.storage_key) is True


@pytest.mark.asyncio
async def test_inconclusive_leaves_cache_alone(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential
) -> None:
    validator = TokenValidator(make_client(lambda r: httpx.Response(503)), cache, store)

    outcome = await validator.ensure_usable(saved_anthropic_key)

    assert outcome == ValidationOutcome.INCONCLUSIVE
    assert cache.is_validated(saved_anthropic_key.storage_key) is None
    assert await store.load_usable(saved_anthropic_key.storage_key) is not None


@pytest.mark.asyncio
async def test_inconclusive_never_flips_a_validated_entry(
    make_client, cache: ValidationCache, anthropic_key: Credential
) -> None:
    cache.mark_validated(anthropic_key.storage_key)
    validator = TokenValidator(make_client(lambda r: httpx.Response(500)), cache)

    assert await validator.validate(anthropic_key) == ValidationOutcome.INCONCLUSIVE
    assert cache.is_validated(anthropic_key.storage_key) is True


@pytest.mark.asyncio
async def test_rejected_credential_is_cleared_and_requires_reconnect(
    make_client, cache: ValidationCache, store: CredentialStore, saved_anthropic_key: Credential
) -> None:
    validator = TokenValidator(make_client(lambda r: httpx.Response(401)), cache, store)

    with pytest.raises(ReconnectRequiredError):
        await validator.ensure_usable(saved_anthropic_key)

    assert await store.load_usable(saved_anthropic_key.storage_key) is None
    assert cache.is_validated(saved_anthropic_key.storage_key) is None


@pytest.mark.asyncio
async def test_copilot_validation_checks_github_token(make_client) -> None:
    log = RequestLog(
        lambda request: httpx.Response(200, json={"token": "copilot-api", "expires_at": 0})
    )
    credential = Credential(
        provider=Provider.GITHUB_COPILOT, kind=CredentialKind.OAUTH, secret="gho_github_token"
    )

    outcome = await TokenValidator(make_client(log)).validate(credential)

    assert outcome == ValidationOutcome.VALID
    request = log.requests[0]
    assert str(request.url) == "https://api.github.com/copilot_internal/v2/token"
    assert request.headers["authorization"] == "Bearer gho_github_token"
