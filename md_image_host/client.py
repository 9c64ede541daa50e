"""SDK client setup for the vision providers."""

from __future__ import annotations

import logging

import anthropic
import openai

from md_image_host.claude_api import ClaudeApi
from md_image_host.describer import (
    ClaudeVisionBackend,
    OpenAIVisionBackend,
    VisionBackend,
)
from md_image_host.models import VISION_PROVIDERS, ApiFamily, VisionModelConfig

_log = logging.getLogger("client")

DEFAULT_TIMEOUT_S = 30.0
"""Per-request timeout for vision SDK clients."""


def create_anthropic_client(
    api_key: str, timeout: float = DEFAULT_TIMEOUT_S,
) -> anthropic.Anthropic:
    """Create an Anthropic client.

    SDK-level retries are disabled; :class:`ClaudeApi` owns the retry loop.
    """
    return anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)


def create_openai_client(
    api_key: str,
    model: VisionModelConfig,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> openai.OpenAI:
    """Create an OpenAI client, pointed at ``model.base_url`` when set."""
    kwargs: dict = {"api_key": api_key, "timeout": timeout}
    if model.base_url:
        _log.debug("  Using OpenAI-compatible endpoint: %s", model.base_url)
        kwargs["base_url"] = model.base_url
    return openai.OpenAI(**kwargs)


def create_vision_backend(
    provider: str,
    api_key: str,
    timeout: float = DEFAULT_TIMEOUT_S,
    max_retries: int = 3,
) -> VisionBackend:
    """Build the vision backend registered under *provider*.

    Args:
        provider: Key into :data:`~md_image_host.models.VISION_PROVIDERS`.
        api_key: Provider API key.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per request for the Claude backend.

    Raises:
        ValueError: Unknown provider.
    """
    try:
        model = VISION_PROVIDERS[provider]
    except KeyError:
        raise ValueError(
            f"Unsupported AI provider: {provider!r} "
            f"(choose from {', '.join(VISION_PROVIDERS)})"
        ) from None

    if model.family is ApiFamily.ANTHROPIC:
        api = ClaudeApi(
            create_anthropic_client(api_key, timeout), model, max_retries=max_retries,
        )
        return ClaudeVisionBackend(api)
    return OpenAIVisionBackend(create_openai_client(api_key, model, timeout), model)
