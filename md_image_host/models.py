"""Vision provider configurations for alt-text generation.

Each provider entry names the SDK family used to reach it, the default
vision-capable model, the environment variable holding its API key, and
(for OpenAI-compatible services) the endpoint base URL.

References:
  - Claude vision:  https://platform.claude.com/docs/en/build-with-claude/vision
  - OpenAI vision:  https://platform.openai.com/docs/guides/images-vision
  - xAI (OpenAI-compatible API): https://docs.x.ai/docs/guides/image-understanding
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ApiFamily(Enum):
    """SDK used to talk to a provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass(frozen=True)
class VisionModelConfig:
    """Complete configuration for one vision provider."""

    provider: str
    display_name: str
    family: ApiFamily
    model_id: str
    api_key_env: str
    max_output_tokens: int = 64  # short alt text only
    base_url: str | None = None


# ---------------------------------------------------------------------------
# Provider registry
# ---------------------------------------------------------------------------

CLAUDE = VisionModelConfig(
    provider="claude",
    display_name="Claude Haiku 4.5",
    family=ApiFamily.ANTHROPIC,
    model_id="claude-haiku-4-5",
    api_key_env="ANTHROPIC_API_KEY",
)

OPENAI = VisionModelConfig(
    provider="openai",
    display_name="OpenAI GPT-4o",
    family=ApiFamily.OPENAI,
    model_id="gpt-4o",
    api_key_env="OPENAI_API_KEY",
)

XAI = VisionModelConfig(
    provider="xai",
    display_name="xAI Grok 2 Vision",
    family=ApiFamily.OPENAI,
    model_id="grok-2-vision-1212",
    api_key_env="XAI_API_KEY",
    base_url="https://api.x.ai/v1",
)

VISION_PROVIDERS: dict[str, VisionModelConfig] = {
    "claude": CLAUDE,
    "openai": OPENAI,
    "xai": XAI,
}

DEFAULT_PROVIDER = "openai"
"""Provider used when neither ``--ai-provider`` nor ``AI_PROVIDER`` is set."""
