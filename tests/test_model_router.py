"""Unit tests for `ModelRouter` configuration resolution."""

from __future__ import annotations

import pytest

from src.cass.domain.errors import ConfigurationMissing
from src.cass.services.model_router import MISSING_KEY_MESSAGE, ModelRouter, ProviderSelection

from .utils import FakeConfig


@pytest.mark.asyncio
async def test_defaults_to_gemini_with_configured_model():
    router = ModelRouter(env={"API_KEY": "secret"})
    config = await router.resolve(FakeConfig(model="2.5-pro"))
    assert config.provider == "gemini"
    assert config.api_key == "secret"
    assert config.model == "2.5-pro"


@pytest.mark.asyncio
async def test_falls_back_to_provider_key_and_default_model():
    router = ModelRouter(env={"GEMINI_API_KEY": "gem"})
    config = await router.resolve(FakeConfig(model=""))
    assert config.api_key == "gem"
    assert config.model == "gemini-2.5-flash"


@pytest.mark.asyncio
async def test_missing_key_raises_configuration_missing_before_model_lookup():
    router = ModelRouter(env={})
    config = FakeConfig(error=AssertionError("model lookup must not run"))
    with pytest.raises(ConfigurationMissing, match="API key not found"):
        await router.resolve(config)


@pytest.mark.asyncio
async def test_blank_key_counts_as_missing():
    router = ModelRouter(env={"API_KEY": "   "})
    with pytest.raises(ConfigurationMissing) as excinfo:
        await router.resolve(FakeConfig())
    assert excinfo.value.message == MISSING_KEY_MESSAGE


@pytest.mark.asyncio
async def test_local_provider_does_not_require_key():
    router = ModelRouter(env={"API_PROVIDER": "Local", "LOCAL_BASE_URL": "http://gpu-box:8000"})
    config = await router.resolve(FakeConfig(model="llava"))
    assert config.provider == "local"
    assert config.api_key is None
    assert config.base_url == "http://gpu-box:8000"


@pytest.mark.asyncio
async def test_unknown_provider_falls_back_to_gemini():
    router = ModelRouter(env={"API_PROVIDER": "carrier-pigeon", "API_KEY": "k"})
    config = await router.resolve(FakeConfig(model=""))
    assert config.provider == "gemini"
    assert config.model == "gemini-2.5-flash"


@pytest.mark.asyncio
async def test_openai_provider_uses_its_own_key_and_endpoint():
    router = ModelRouter(env={"API_PROVIDER": "openai", "OPENAI_API_KEY": "sk-test"})
    config = await router.resolve(FakeConfig(model="gpt-4o"))
    assert config.provider == "openai"
    assert config.api_key == "sk-test"
    assert config.model == "gpt-4o"
    assert config.base_url == "https://api.openai.com"


@pytest.mark.asyncio
async def test_openai_provider_requires_a_key():
    router = ModelRouter(env={"API_PROVIDER": "openai"})
    with pytest.raises(ConfigurationMissing):
        await router.resolve(FakeConfig())


@pytest.mark.asyncio
async def test_model_lookup_failure_propagates():
    router = ModelRouter(env={"API_KEY": "k"})
    with pytest.raises(OSError):
        await router.resolve(FakeConfig(error=OSError("config unreadable")))


def test_resolve_provider_exposes_static_details():
    selection = ModelRouter(env={}).resolve_provider("gemini")
    assert isinstance(selection, ProviderSelection)
    assert selection.api_key_env == "GEMINI_API_KEY"
    assert selection.requires_api_key is True
