# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import TYPE_CHECKING

from .credential_store import CredentialStore
from .errors import (
    CredentialNotFoundError,
    InvalidCodeError,
    OAuthError,
    OAuthNetworkError,
    ProviderRejectedError,
    ReconnectRequiredError,
    ScryAuthError,
    StateMismatchError,
    StorageError,
)
from .types import (
    AnthropicAuthMethod,
    AuthError,
    ChatMessage,
    Credential,
    CredentialKind,
    OAuthSession,
    OAuthStage,
    Provider,
    StreamDone,
    StreamError,
    StreamEvent,
    TokenChunk,
    ValidationOutcome,
)
from .validation_cache import ValidationCache

# For type checkers, import the HTTP-facing components statically
# At runtime, they're lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .device_flow import DeviceCodeFlow
    from .oauth import OAuthFlowManager
    from .providers import PROVIDER_PLUGINS
    from .session import ChatSession, SessionContext
    from .stream_retry import StreamRetryCoordinator
    from .validator import TokenValidator

__all__ = [
    "AnthropicAuthMethod",
    "AuthError",
    "ChatMessage",
    "ChatSession",
    "Credential",
    "CredentialKind",
    "CredentialNotFoundError",
    "CredentialStore",
    "DeviceCodeFlow",
    "InvalidCodeError",
    "OAuthError",
    "OAuthFlowManager",
    "OAuthNetworkError",
    "OAuthSession",
    "OAuthStage",
    "PROVIDER_PLUGINS",
    "Provider",
    "ProviderRejectedError",
    "ReconnectRequiredError",
    "ScryAuthError",
    "SessionContext",
    "StateMismatchError",
    "StorageError",
    "StreamDone",
    "StreamError",
    "StreamEvent",
    "StreamRetryCoordinator",
    "TokenChunk",
    "TokenValidator",
    "ValidationCache",
    "ValidationOutcome",
]

_LAZY_IMPORTS = {
    "DeviceCodeFlow": ".device_flow",
    "OAuthFlowManager": ".oauth",
    "PROVIDER_PLUGINS": ".providers",
    "ChatSession": ".session",
    "SessionContext": ".session",
    "StreamRetryCoordinator": ".stream_retry",
    "TokenValidator": ".validator",
}


def __getattr__(name):
    """Lazy-load the httpx-backed components to speed up module import."""
    module_name = _LAZY_IMPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    import importlib

    return getattr(importlib.import_module(module_name, __name__), name)
