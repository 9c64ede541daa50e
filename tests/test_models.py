"""Unit tests for models.py and client.py (vision provider registry and setup)."""

from unittest.mock import patch

import pytest

from md_image_host.client import create_vision_backend
from md_image_host.describer import ClaudeVisionBackend, OpenAIVisionBackend
from md_image_host.models import (
    CLAUDE,
    DEFAULT_PROVIDER,
    OPENAI,
    VISION_PROVIDERS,
    XAI,
    ApiFamily,
)


class TestVisionProviders:
    """Registry contents."""

    def test_registry_keys(self):
        assert set(VISION_PROVIDERS) == {"claude", "openai", "xai"}

    def test_provider_names_match_keys(self):
        for key, config in VISION_PROVIDERS.items():
            assert config.provider == key

    def test_default_provider_registered(self):
        assert DEFAULT_PROVIDER in VISION_PROVIDERS

    def test_families(self):
        assert CLAUDE.family is ApiFamily.ANTHROPIC
        assert OPENAI.family is ApiFamily.OPENAI
        assert XAI.family is ApiFamily.OPENAI

    def test_xai_uses_compatible_endpoint(self):
        assert XAI.base_url == "https://api.x.ai/v1"
        assert OPENAI.base_url is None

    def test_api_key_envs(self):
        assert CLAUDE.api_key_env == "ANTHROPIC_API_KEY"
        assert OPENAI.api_key_env == "OPENAI_API_KEY"
        assert XAI.api_key_env == "XAI_API_KEY"


class TestCreateVisionBackend:
    """Factory wiring (SDK constructors are patched)."""

    @patch("md_image_host.client.anthropic.Anthropic")
    def test_claude(self, mock_anthropic):
        backend = create_vision_backend("claude", "sk-ant", timeout=12)
        assert isinstance(backend, ClaudeVisionBackend)
        mock_anthropic.assert_called_once_with(api_key="sk-ant", timeout=12, max_retries=0)
        assert backend.name == CLAUDE.display_name

    @patch("md_image_host.client.openai.OpenAI")
    def test_openai(self, mock_openai):
        backend = create_vision_backend("openai", "sk-oai")
        assert isinstance(backend, OpenAIVisionBackend)
        assert "base_url" not in mock_openai.call_args[1]

    @patch("md_image_host.client.openai.OpenAI")
    def test_xai_uses_base_url(self, mock_openai):
        backend = create_vision_backend("xai", "xai-key")
        assert isinstance(backend, OpenAIVisionBackend)
        assert mock_openai.call_args[1]["base_url"] == XAI.base_url
        assert backend.name == XAI.display_name

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unsupported AI provider"):
            create_vision_backend("gemini", "key")
