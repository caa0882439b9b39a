# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/scry_auth/providers/__init__.py

from typing import Dict, List, Optional, Type, Union

from ..types import Provider
from .anthropic_provider import AnthropicProvider
from .copilot_provider import CopilotProvider
from .ollama_provider import OllamaProvider
from .openrouter_provider import OpenRouterProvider
from .provider_interface import (
    ChatOptions,
    DeviceFlowEndpoints,
    OAuthEndpoints,
    ProviderInterface,
)

PROVIDER_PLUGINS: Dict[Provider, Type[ProviderInterface]] = {
    Provider.ANTHROPIC: AnthropicProvider,
    Provider.GITHUB_COPILOT: CopilotProvider,
    Provider.OPENROUTER: OpenRouterProvider,
    Provider.OLLAMA: OllamaProvider,
}


def get_provider_class(provider: Union[Provider, str]) -> Type[ProviderInterface]:
    """
    Returns the plugin class for a given provider.
    """
    try:
        return PROVIDER_PLUGINS[Provider(provider)]
    except (ValueError, KeyError):
        raise ValueError(f"Unknown provider: {provider}")


def get_provider(
    provider: Union[Provider, str], api_base: Optional[str] = None
) -> ProviderInterface:
    """Instantiate the plugin for a provider."""
    return get_provider_class(provider)(api_base)


def get_available_providers() -> List[str]:
    """
    Returns a list of available provider names.
    """
    return [p.value for p in PROVIDER_PLUGINS]


__all__ = [
    "PROVIDER_PLUGINS",
    "AnthropicProvider",
    "ChatOptions",
    "CopilotProvider",
    "DeviceFlowEndpoints",
    "OAuthEndpoints",
    "OllamaProvider",
    "OpenRouterProvider",
    "ProviderInterface",
    "get_available_providers",
    "get_provider",
    "get_provider_class",
]
