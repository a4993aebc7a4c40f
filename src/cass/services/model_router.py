"""Resolve the provider, credentials and model for a processing request.

The router does not couple directly to concrete SDK clients; it returns a
:class:`ModelConfiguration` that the streaming engine uses to pick a stream
client. Resolution is per request and never cached.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from ..domain.errors import ConfigurationMissing
from ..domain.processing_models import ModelConfiguration
from ..infrastructure.config_store import ConfigurationProvider

_logger = logging.getLogger("cass.processing")

DEFAULT_PROVIDER = "gemini"
MISSING_KEY_MESSAGE = "API key not found. Please configure it in settings."


@dataclass(frozen=True)
class ProviderSelection:
    """Static details about a supported provider."""

    name: str
    default_model: str
    api_key_env: Optional[str]
    base_url_env: Optional[str] = None
    default_base_url: Optional[str] = None
    requires_api_key: bool = True


class ModelRouter:
    """Environment-driven provider resolution."""

    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "gemini": {
            "api_key_env": "GEMINI_API_KEY",
            "default_model": "gemini-2.5-flash",
        },
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "default_model": "gpt-oss:120b",
            "default_base_url": "http://127.0.0.1:11434",
            "requires_api_key": False,
        },
    }

    def __init__(self, env: Optional[Dict[str, str]] = None) -> None:
        self._env = env if env is not None else os.environ

    def provider_name(self) -> str:
        return (self._env.get("API_PROVIDER") or DEFAULT_PROVIDER).strip().lower() or DEFAULT_PROVIDER

    def resolve_provider(self, provider: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        return ProviderSelection(
            name=provider,
            default_model=str(cfg.get("default_model") or ""),
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            base_url_env=cfg.get("base_url_env"),  # type: ignore[arg-type]
            default_base_url=cfg.get("default_base_url"),  # type: ignore[arg-type]
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    def _api_key(self, selection: ProviderSelection) -> Optional[str]:
        key = self._env.get("API_KEY")
        if not key and selection.api_key_env:
            key = self._env.get(selection.api_key_env)
        return key.strip() if key and key.strip() else None

    def _base_url(self, selection: ProviderSelection) -> Optional[str]:
        if selection.base_url_env and self._env.get(selection.base_url_env):
            return self._env[selection.base_url_env]
        return selection.default_base_url

    async def resolve(self, config: ConfigurationProvider) -> ModelConfiguration:
        """Return the configuration for one request.

        An ``API_PROVIDER`` with no entry in :attr:`PROVIDER_CONFIG` is served
        by the default provider.

        Raises
        ------
        ConfigurationMissing
            If the provider requires an API key and none is configured.
        """

        provider = self.provider_name()
        if provider not in self.PROVIDER_CONFIG:
            _logger.warning("Unsupported provider %s, falling back to %s", provider, DEFAULT_PROVIDER)
            provider = DEFAULT_PROVIDER
        selection = self.resolve_provider(provider)

        api_key = self._api_key(selection)
        if selection.requires_api_key and not api_key:
            raise ConfigurationMissing(MISSING_KEY_MESSAGE)

        model = (await config.resolve_model()) or selection.default_model
        _logger.debug("model_configuration provider=%s model=%s has_key=%s", selection.name, model, bool(api_key))
        return ModelConfiguration(
            provider=selection.name,
            api_key=api_key,
            model=model,
            base_url=self._base_url(selection),
        )
