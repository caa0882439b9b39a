# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Device authorization flow (RFC 8628).

Device Flow steps:
1. Request a device code and a short user code
2. The user enters the code at the verification URL on any device
3. Poll the token endpoint until the user approves, denies or the code expires
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx

from .errors import OAuthError, OAuthNetworkError, ProviderRejectedError
from .providers import DeviceFlowEndpoints, ProviderInterface
from .types import (
    Credential,
    CredentialKind,
    DeviceCode,
    PollResult,
    PollStatus,
)
from .utils import format_credential_for_display

lib_logger = logging.getLogger("scry_auth")

DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_INCREMENT_SECONDS = 5
REQUEST_TIMEOUT_SECONDS = 30.0


class DeviceCodeFlow:
    """Runs the device flow for one provider plugin."""

    def __init__(
        self,
        provider: ProviderInterface,
        client: httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        endpoints = provider.device_flow_endpoints()
        if endpoints is None:
            raise ProviderRejectedError(
                f"{provider.provider.display_name} does not support device sign-in"
            )
        self.provider = provider
        self.endpoints: DeviceFlowEndpoints = endpoints
        self.client = client
        self._sleep = sleep
        self._clock = clock

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        try:
            return await self.client.post(
                url,
                headers={"Accept": "application/json"},
                json=payload,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise OAuthNetworkError(f"Device authorization request failed: {e}") from e

    async def request_device_code(self) -> DeviceCode:
        """
        Raises:
            OAuthNetworkError: the provider could not be reached
            ProviderRejectedError: the provider refused to issue a code
        """
        payload = {"client_id": self.endpoints.client_id}
        if self.endpoints.scope:
            payload["scope"] = self.endpoints.scope

        response = await self._post(self.endpoints.device_code_url, payload)
        if not response.is_success:
            raise ProviderRejectedError(
                f"Failed to initiate device authorization: {response.text[:500]}"
            )
        try:
            device_code = DeviceCode.from_response(response.json(), issued_at=self._clock())
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderRejectedError(f"Malformed device code response: {e}") from e

        lib_logger.info(
            f"Device code issued for {self.provider.provider.display_name}; "
            f"user code {device_code.user_code}"
        )
        return device_code

    async def poll_once(self, device_code: DeviceCode) -> PollResult:
        """Ask the token endpoint once. Never raises for provider answers."""
        response = await self._post(
            self.endpoints.access_token_url,
            {
                "client_id": self.endpoints.client_id,
                "device_code": device_code.device_code,
                "grant_type": DEVICE_GRANT_TYPE,
            },
        )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if data.get("access_token"):
            return PollResult(PollStatus.SUCCESS, token_data=data)

        error = data.get("error")
        if error == "authorization_pending":
            return PollResult(PollStatus.PENDING)
        if error == "slow_down":
            return PollResult(PollStatus.SLOW_DOWN)
        if error == "expired_token":
            return PollResult(PollStatus.EXPIRED, message="The device code expired")
        if error == "access_denied":
            return PollResult(PollStatus.ACCESS_DENIED, message="Authorization was denied")

        message = data.get("error_description") or error or f"HTTP {response.status_code}"
        return PollResult(PollStatus.ERROR, message=str(message))

    async def poll_for_token(
        self,
        device_code: DeviceCode,
        on_pending: Optional[Callable[[DeviceCode], None]] = None,
    ) -> Credential:
        """
        Poll until the user finishes, waiting `interval` seconds between polls.

        Raises:
            OAuthError: the code expired, the user denied access, or the
                provider reported an error
            OAuthNetworkError: the provider could not be reached
        """
        interval = device_code.interval
        while True:
            if device_code.is_expired(self._clock()):
                raise OAuthError("OAuth flow timed out. Please try again.")

            await self._sleep(interval)
            result = await self.poll_once(device_code)

            if result.status == PollStatus.SUCCESS:
                token = result.token_data["access_token"]
                lib_logger.info(
                    f"{self.provider.provider.display_name} device authorization complete "
                    f"({format_credential_for_display(token)})"
                )
                return Credential(
                    provider=self.provider.provider,
                    kind=CredentialKind.OAUTH,
                    secret=token,
                    refresh_token=result.token_data.get("refresh_token"),
                )
            if result.status == PollStatus.PENDING:
                if on_pending:
                    on_pending(device_code)
                continue
            if result.status == PollStatus.SLOW_DOWN:
                interval += SLOW_DOWN_INCREMENT_SECONDS
                lib_logger.debug(f"Device flow asked to slow down; interval now {interval}s")
                continue
            if result.status == PollStatus.ACCESS_DENIED:
                raise ProviderRejectedError(result.message)
            raise OAuthError(f"OAuth failed: {result.message}")
