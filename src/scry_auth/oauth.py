# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Browser-based OAuth (authorization code with PKCE) negotiation.

The provider shows the authorization code on its own callback page; the
user pastes it back as "code#state" (or pastes the whole redirect URL).
The manager verifies the state, exchanges the code with the verifier and
produces a Credential. Manual API-key entry lives here too so every way of
connecting ends in the same Credential shape.
"""

import hmac
import logging
import webbrowser
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from .errors import (
    InvalidCodeError,
    OAuthError,
    OAuthNetworkError,
    ProviderRejectedError,
    StateMismatchError,
)
from .pkce import CODE_CHALLENGE_METHOD, generate_pkce, generate_state_nonce
from .providers import OAuthEndpoints, ProviderInterface, get_provider
from .types import (
    AnthropicAuthMethod,
    Credential,
    CredentialKind,
    OAuthSession,
    OAuthStage,
    Provider,
)
from .utils import format_credential_for_display

lib_logger = logging.getLogger("scry_auth")

TOKEN_REQUEST_TIMEOUT_SECONDS = 30.0


def parse_authorization_response(pasted: str) -> Tuple[str, Optional[str]]:
    """
    Extract (code, state) from what the user pasted.

    Accepts "code#state", a bare code, or the full redirect URL with code
    and state query parameters.

    Raises:
        InvalidCodeError: nothing usable was pasted
    """
    value = (pasted or "").strip()
    if not value:
        raise InvalidCodeError("No authorization code was entered")

    if value.startswith(("http://", "https://")):
        parsed = urlparse(value)
        params = parse_qs(parsed.query)
        code = (params.get("code") or [""])[0]
        state = (params.get("state") or [None])[0]
        if not state and parsed.fragment:
            state = parsed.fragment
    else:
        code, sep, state = value.partition("#")
        if not sep:
            state = None

    code = code.strip()
    if not code or any(ch.isspace() for ch in code) or "#" in (state or ""):
        raise InvalidCodeError(
            "Invalid authorization code format. Expected: {code}#{state}"
        )
    return code, (state.strip() if state else None)


class OAuthFlowManager:
    """
    Drives OAuthSession objects through their stages.

    Sessions move AWAITING_METHOD_CHOICE -> AWAITING_AUTHORIZATION_CODE ->
    EXCHANGING_CODE -> COMPLETE | FAILED. A terminal session is never
    accepted again; the caller starts over with a new one.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        browser_opener: Optional[Callable[[str], Any]] = webbrowser.open,
        providers: Optional[Dict[Provider, ProviderInterface]] = None,
    ):
        self.client = client
        self.browser_opener = browser_opener
        self._providers = providers or {}

    def _plugin(self, provider: Provider) -> ProviderInterface:
        if provider not in self._providers:
            self._providers[provider] = get_provider(provider)
        return self._providers[provider]

    def _endpoints(self, provider: Provider) -> OAuthEndpoints:
        endpoints = self._plugin(provider).oauth_endpoints()
        if endpoints is None:
            raise ProviderRejectedError(
                f"{provider.display_name} does not support browser sign-in"
            )
        return endpoints

    # =========================================================================
    # NEGOTIATION
    # =========================================================================

    def start(self, provider: Provider) -> OAuthSession:
        """Create a fresh session waiting for the user to pick a method."""
        self._endpoints(provider)
        code_verifier, code_challenge = generate_pkce()
        session = OAuthSession(
            provider=provider,
            code_verifier=code_verifier,
            code_challenge=code_challenge,
            state_nonce=generate_state_nonce(),
        )
        lib_logger.debug(f"Started OAuth session for {provider.display_name}")
        return session

    def choose_method(
        self, session: OAuthSession, method: Optional[AnthropicAuthMethod] = None
    ) -> OAuthSession:
        """
        Build the authorization URL for the chosen method and open it.

        A browser that fails to open is not an error; the caller shows the
        URL so the user can open it by hand.
        """
        if session.stage != OAuthStage.AWAITING_METHOD_CHOICE:
            raise OAuthError(
                f"Cannot choose a method in stage '{session.stage.value}'"
            )

        endpoints = self._endpoints(session.provider)
        method = method or endpoints.default_method
        if method not in endpoints.authorize_urls:
            raise ProviderRejectedError(
                f"{session.provider.display_name} does not offer '{method.value}'"
            )

        session.method = method
        session.authorization_url = self.build_authorization_url(session, endpoints)
        session.stage = OAuthStage.AWAITING_AUTHORIZATION_CODE

        if self.browser_opener is not None:
            try:
                self.browser_opener(session.authorization_url)
                lib_logger.info("Browser opened successfully for OAuth flow")
            except Exception as e:
                lib_logger.warning(
                    f"Failed to open browser automatically: {e}. Please open the URL manually."
                )
        return session

    def begin(
        self, provider: Provider, method: Optional[AnthropicAuthMethod] = None
    ) -> OAuthSession:
        """Start a session and immediately choose a method (default if None)."""
        return self.choose_method(self.start(provider), method)

    @staticmethod
    def build_authorization_url(session: OAuthSession, endpoints: OAuthEndpoints) -> str:
        auth_params = {
            "code": "true",
            "response_type": "code",
            "client_id": endpoints.client_id,
            "redirect_uri": endpoints.redirect_uri,
            "scope": endpoints.scopes,
            "code_challenge": session.code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
            "state": session.state_nonce,
        }
        return f"{endpoints.authorize_urls[session.method]}?" + urlencode(auth_params)

    async def submit_code(self, session: OAuthSession, pasted: str) -> Credential:
        """
        Verify the pasted response and exchange the code for a credential.

        Raises:
            InvalidCodeError: the session is not waiting for a code, or the
                input could not be parsed
            StateMismatchError: the returned state is not this session's
            OAuthNetworkError: the token endpoint could not be reached
            ProviderRejectedError: the provider refused the exchange
        """
        if session.stage != OAuthStage.AWAITING_AUTHORIZATION_CODE:
            raise InvalidCodeError("This sign-in session is no longer accepting codes")

        try:
            code, state = parse_authorization_response(pasted)
            if state is None or not hmac.compare_digest(
                state.encode("utf-8"), session.state_nonce.encode("utf-8")
            ):
                raise StateMismatchError(
                    "State mismatch: the code does not belong to this sign-in attempt"
                )

            session.stage = OAuthStage.EXCHANGING_CODE
            credential = await self._exchange_code(session, code, state)
        except OAuthError as e:
            session.stage = OAuthStage.FAILED
            session.error = str(e)
            lib_logger.warning(
                f"{session.provider.display_name} sign-in failed: {e}"
            )
            raise

        session.stage = OAuthStage.COMPLETE
        lib_logger.info(
            f"{session.provider.display_name} OAuth completed "
            f"({format_credential_for_display(credential.secret)})"
        )
        return credential

    async def _exchange_code(
        self, session: OAuthSession, code: str, state: str
    ) -> Credential:
        endpoints = self._endpoints(session.provider)
        lib_logger.info("Exchanging authorization code for tokens...")
        token_data = await self._post_json(
            endpoints.token_url,
            {
                "code": code,
                "state": state,
                "grant_type": "authorization_code",
                "client_id": endpoints.client_id,
                "redirect_uri": endpoints.redirect_uri,
                "code_verifier": session.code_verifier,
            },
            what="Token exchange",
        )

        access_token = token_data.get("access_token")
        if not access_token:
            raise ProviderRejectedError("Token response did not contain an access token")

        if session.method == AnthropicAuthMethod.CREATE_API_KEY and endpoints.api_key_url:
            api_key = await self._create_api_key(endpoints.api_key_url, access_token)
            return Credential(
                provider=session.provider,
                kind=CredentialKind.API_KEY,
                secret=api_key,
            )

        expires_at = None
        if token_data.get("expires_in"):
            try:
                expires_in = int(float(token_data["expires_in"]))
            except (ValueError, TypeError, OverflowError) as e:
                raise ProviderRejectedError(
                    f"Token response had an invalid expires_in: {token_data['expires_in']!r}"
                ) from e
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return Credential(
            provider=session.provider,
            kind=CredentialKind.OAUTH,
            secret=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=expires_at,
        )

    async def _create_api_key(self, api_key_url: str, access_token: str) -> str:
        """Use the freshly issued bearer token once to mint a real API key."""
        lib_logger.info("Creating API key from OAuth token...")
        key_data = await self._post_json(
            api_key_url,
            None,
            what="API key creation",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        api_key = key_data.get("raw_key") or key_data.get("api_key")
        if not api_key:
            raise ProviderRejectedError("API key response did not contain a key")
        return api_key

    async def _post_json(
        self,
        url: str,
        payload: Optional[Dict[str, Any]],
        what: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        request_headers = {"Accept": "application/json", **(headers or {})}
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers=request_headers,
                timeout=TOKEN_REQUEST_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise OAuthNetworkError(f"{what} failed: {e}") from e

        if not response.is_success:
            raise ProviderRejectedError(
                f"{what} failed ({response.status_code}): {response.text[:500]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRejectedError(f"{what} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProviderRejectedError(f"{what} returned an unexpected response")
        return data

    # =========================================================================
    # MANUAL API KEYS
    # =========================================================================

    def connect_with_api_key(self, provider: Provider, api_key: str) -> Credential:
        """
        Build an API-key credential after the provider's format check.

        Raises:
            ProviderRejectedError: the key is malformed; nothing is stored
        """
        api_key = (api_key or "").strip()
        problem = self._plugin(provider).check_api_key_format(api_key)
        if problem:
            raise ProviderRejectedError(problem)
        return Credential(provider=provider, kind=CredentialKind.API_KEY, secret=api_key)
