# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Type definitions for the auth and session package.

This module contains the dataclasses and enums shared by the credential
store, the OAuth flows, the validator and the stream retry coordinator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


# =============================================================================
# ENUMS
# =============================================================================


class Provider(str, Enum):
    """LLM providers a session can connect to."""

    ANTHROPIC = "anthropic"
    GITHUB_COPILOT = "github_copilot"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"

    @property
    def display_name(self) -> str:
        return _PROVIDER_DISPLAY_NAMES[self]


_PROVIDER_DISPLAY_NAMES = {
    Provider.ANTHROPIC: "Anthropic",
    Provider.GITHUB_COPILOT: "GitHub Copilot",
    Provider.OPENROUTER: "OpenRouter",
    Provider.OLLAMA: "Ollama",
}


class CredentialKind(str, Enum):
    """How the secret of a credential is presented to the provider."""

    API_KEY = "api_key"
    OAUTH = "oauth"  # Bearer access token


class OAuthStage(str, Enum):
    """Stages of a PKCE negotiation. COMPLETE and FAILED are terminal."""

    AWAITING_METHOD_CHOICE = "awaiting_method_choice"
    AWAITING_AUTHORIZATION_CODE = "awaiting_authorization_code"
    EXCHANGING_CODE = "exchanging_code"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OAuthStage.COMPLETE, OAuthStage.FAILED)


class AnthropicAuthMethod(str, Enum):
    """Which Anthropic authorization endpoint a negotiation uses."""

    CLAUDE_PRO_MAX = "claude_pro_max"  # Bearer token tied to a subscription
    CREATE_API_KEY = "create_api_key"  # Token used once to mint an API key


class ValidationOutcome(str, Enum):
    """Classification of a validation request. Not an error."""

    VALID = "valid"
    INVALID = "invalid"
    INCONCLUSIVE = "inconclusive"


# =============================================================================
# CREDENTIALS
# =============================================================================


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_storage_key(provider: Union[Provider, str], account: Optional[str] = None) -> str:
    """Derive the stable store/cache key for a provider (and optional sub-account)."""
    value = provider.value if isinstance(provider, Provider) else str(provider)
    return f"{value}/{account}" if account else value


@dataclass
class Credential:
    """
    One provider connection.

    The storage_key defaults to the provider value; sub-accounts append
    "/<account>".
    """

    provider: Provider
    kind: CredentialKind
    secret: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    storage_key: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    model: Optional[str] = None

    def __post_init__(self):
        if not self.storage_key:
            self.storage_key = make_storage_key(self.provider)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """API keys and tokens without a known expiry never expire."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the durable key/value record."""
        record: Dict[str, Any] = {
            "provider": self.provider.value,
            "type": self.kind.value,
            "secret": self.secret,
            "created_at": self.created_at.isoformat(),
        }
        if self.refresh_token:
            record["refresh_token"] = self.refresh_token
        if self.expires_at:
            record["expires_at"] = self.expires_at.isoformat()
        if self.model:
            record["model"] = self.model
        return record

    @classmethod
    def from_record(cls, storage_key: str, record: Dict[str, Any]) -> "Credential":
        """
        Rebuild a credential from its durable record.

        Raises KeyError/ValueError/TypeError on malformed records; the store
        turns those into StorageParseError.
        """
        expires_at = record.get("expires_at")
        return cls(
            provider=Provider(record["provider"]),
            kind=CredentialKind(record["type"]),
            secret=str(record["secret"]),
            refresh_token=record.get("refresh_token"),
            storage_key=storage_key,
            created_at=datetime.fromisoformat(record["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            model=record.get("model"),
        )


# =============================================================================
# OAUTH
# =============================================================================


@dataclass
class OAuthSession:
    """
    Transient state of one PKCE negotiation. Never persisted.

    A session in a terminal stage is discarded; a new negotiation needs a
    fresh session.
    """

    provider: Provider
    code_verifier: str = field(repr=False)
    code_challenge: str
    state_nonce: str = field(repr=False)
    stage: OAuthStage = OAuthStage.AWAITING_METHOD_CHOICE
    method: Optional[AnthropicAuthMethod] = None
    authorization_url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DeviceCode:
    """Device authorization response (RFC 8628)."""

    device_code: str = field(repr=False)
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int = 5
    verification_uri_complete: Optional[str] = None
    issued_at: float = 0.0

    @classmethod
    def from_response(cls, data: Dict[str, Any], issued_at: float) -> "DeviceCode":
        return cls(
            device_code=data["device_code"],
            user_code=data["user_code"],
            verification_uri=data["verification_uri"],
            expires_in=int(data["expires_in"]),
            interval=int(data.get("interval") or 5),
            verification_uri_complete=data.get("verification_uri_complete"),
            issued_at=issued_at,
        )

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class PollStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    EXPIRED = "expired"
    ACCESS_DENIED = "access_denied"
    ERROR = "error"


@dataclass
class PollResult:
    status: PollStatus
    token_data: Optional[Dict[str, Any]] = field(default=None, repr=False)
    message: Optional[str] = None


# =============================================================================
# CHAT
# =============================================================================


@dataclass
class ChatMessage:
    """A message in the conversation history."""

    role: str  # "system" | "user" | "assistant"
    content: str
    is_banner: bool = False  # Shown to the user, never sent to a provider
    timestamp: datetime = field(default_factory=datetime.now)

    def to_api_format(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class TokenChunk:
    text: str


@dataclass(frozen=True)
class StreamDone:
    pass


@dataclass(frozen=True)
class AuthError:
    """Terminal authorization failure after retries were exhausted."""

    message: str
    storage_key: str = ""


@dataclass(frozen=True)
class StreamError:
    message: str


StreamEvent = Union[TokenChunk, StreamDone, AuthError, StreamError]


@dataclass
class RetryState:
    """Per-stream retry bookkeeping; discarded when the stream ends."""

    provider: Provider
    storage_key: str
    attempt: int = 0
