# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from scry_auth import Provider
from scry_auth.credential_store import default_auth_path
from scry_auth.providers import PROVIDER_PLUGINS

DEFAULT_PROVIDER = Provider.ANTHROPIC
DEFAULT_LOG_DIR = "logs"
DEFAULT_HTTP_TIMEOUT = 60.0


class SettingsValidationError(RuntimeError):
    pass


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise SettingsValidationError(f"{name} must be a number, got '{raw}'")
    if value <= 0:
        raise SettingsValidationError(f"{name} must be positive, got {value}")
    return value


def get_default_provider() -> Provider:
    raw = (os.getenv("SCRY_PROVIDER") or "").strip().lower()
    if not raw:
        return DEFAULT_PROVIDER
    try:
        return Provider(raw)
    except ValueError:
        choices = ", ".join(p.value for p in Provider)
        raise SettingsValidationError(
            f"Unknown SCRY_PROVIDER '{raw}'. Expected one of: {choices}"
        )


def load_env_api_keys() -> Dict[Provider, str]:
    """Collect API keys from each provider's API_KEY_ENV_VAR, when set."""
    keys = {}
    for provider, plugin_class in PROVIDER_PLUGINS.items():
        if not plugin_class.API_KEY_ENV_VAR:
            continue
        value = (os.getenv(plugin_class.API_KEY_ENV_VAR) or "").strip()
        if value:
            keys[provider] = value
    return keys


@dataclass(frozen=True)
class Settings:
    provider: Provider
    model: Optional[str]
    auth_file: Path
    log_dir: Path
    http_timeout: float
    open_browser: bool
    ollama_host: Optional[str]
    api_keys: Dict[Provider, str] = field(default_factory=dict)

    def env_api_key(self, provider: Provider) -> Optional[str]:
        return self.api_keys.get(provider)

    def api_base(self, provider: Provider) -> Optional[str]:
        if provider == Provider.OLLAMA:
            return self.ollama_host
        return None


def load_settings(dotenv: bool = True) -> Settings:
    """
    Read settings from the environment, after loading a .env file.

    Raises:
        SettingsValidationError: a variable holds an unusable value
    """
    if dotenv:
        load_dotenv()

    log_dir = (os.getenv("SCRY_LOG_DIR") or "").strip() or DEFAULT_LOG_DIR
    settings = Settings(
        provider=get_default_provider(),
        model=(os.getenv("SCRY_MODEL") or "").strip() or None,
        auth_file=default_auth_path(),
        log_dir=Path(log_dir).expanduser(),
        http_timeout=parse_float_env("SCRY_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        open_browser=not parse_bool_env("SCRY_NO_BROWSER", False),
        ollama_host=(os.getenv("OLLAMA_HOST") or "").strip() or None,
        api_keys=load_env_api_keys(),
    )

    if settings.ollama_host and not settings.ollama_host.startswith(("http://", "https://")):
        raise SettingsValidationError(
            f"OLLAMA_HOST must be an http(s) URL, got '{settings.ollama_host}'"
        )
    if not settings.open_browser:
        logging.getLogger("scry_auth").info("Browser launch disabled by SCRY_NO_BROWSER")
    return settings
