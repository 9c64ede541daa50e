"""Alt-text generation through pluggable vision backends.

:class:`ImageDescriber` turns image bytes plus optional surrounding text into
a short description.  It always downsizes the image first
(:func:`~md_image_host.images.prepare_for_vision`), delegates to a
:class:`VisionBackend`, and cleans the answer.  Any backend failure yields
:data:`FALLBACK_DESCRIPTION` so a single image can never fail a document.

Backends:

- :class:`ClaudeVisionBackend`: Anthropic Messages API via
  :class:`~md_image_host.claude_api.ClaudeApi`.
- :class:`OpenAIVisionBackend`: OpenAI chat completions (also used for
  OpenAI-compatible services such as xAI).
"""

from __future__ import annotations

import logging
import re
from typing import Protocol, runtime_checkable

import openai

from md_image_host.claude_api import ClaudeApi
from md_image_host.context import ImageContext
from md_image_host.images import prepare_for_vision
from md_image_host.models import VisionModelConfig

_log = logging.getLogger("describer")

DEFAULT_INSTRUCTION = "Describe this image in a brief phrase (10 words or less):"

FALLBACK_DESCRIPTION = "Image"
"""Alt text used whenever a description cannot be generated."""

MAX_DESCRIPTION_CHARS = 100

SYSTEM_PROMPT = (
    "You write concise alt text for images embedded in Markdown documents. "
    "Use the surrounding document text, when given, to pick the relevant "
    "subject. Reply with the description only, no quotes or preamble."
)

_DATA_URI_HEADER_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,")
_WHITESPACE_RE = re.compile(r"\s+")
_TRAILING_PUNCT_RE = re.compile(r"[.!,;:\s]+$")


class VisionError(Exception):
    """A vision backend returned no usable answer."""


@runtime_checkable
class VisionBackend(Protocol):
    """Protocol for a vision oracle.

    Any class with a :attr:`name` and a :meth:`generate` method qualifies.
    """

    @property
    def name(self) -> str:
        """Human-readable backend name for logging."""
        ...

    def generate(
        self,
        image_data_uri: str,
        instruction: str,
        before_text: str = "",
        after_text: str = "",
    ) -> str:
        """Return freeform text about the image in *image_data_uri*."""
        ...


def build_prompt(instruction: str, before_text: str = "", after_text: str = "") -> str:
    """Combine the instruction with optional document context."""
    parts = []
    if before_text:
        parts.append(f'Text before the image: "{before_text}"')
    if after_text:
        parts.append(f'Text after the image: "{after_text}"')
    parts.append(instruction)
    return "\n".join(parts)


def clean_description(text: str) -> str:
    """Normalize an oracle answer into Markdown-safe alt text.

    Collapses whitespace, drops surrounding quotes and square brackets,
    cuts the text to :data:`MAX_DESCRIPTION_CHARS` and then strips trailing
    ``.!,;:``.  Returns ``""`` when nothing is left.
    """
    cleaned = _WHITESPACE_RE.sub(" ", text).strip()
    cleaned = cleaned.replace("[", "").replace("]", "")
    cleaned = cleaned.strip("\"'` ")
    cleaned = cleaned[:MAX_DESCRIPTION_CHARS]
    return _TRAILING_PUNCT_RE.sub("", cleaned)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class ClaudeVisionBackend:
    """Vision backend using Claude image content blocks."""

    def __init__(self, api: ClaudeApi) -> None:
        self._api = api

    @property
    def name(self) -> str:
        return self._api.model.display_name

    def generate(
        self,
        image_data_uri: str,
        instruction: str,
        before_text: str = "",
        after_text: str = "",
    ) -> str:
        m = _DATA_URI_HEADER_RE.match(image_data_uri)
        if not m:
            raise VisionError("Image must be a base64 data URI")
        image_block = {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": m.group("mime"),
                "data": image_data_uri[m.end():],
            },
        }
        text_block = {
            "type": "text",
            "text": build_prompt(instruction, before_text, after_text),
        }
        resp = self._api.send_message(
            SYSTEM_PROMPT,
            [{"role": "user", "content": [image_block, text_block]}],
            retry_context="describe image",
        )
        return resp.text


class OpenAIVisionBackend:
    """Vision backend using OpenAI-style chat completions with ``image_url``."""

    def __init__(self, client: openai.OpenAI, model: VisionModelConfig) -> None:
        self._client = client
        self._model = model

    @property
    def name(self) -> str:
        return self._model.display_name

    def generate(
        self,
        image_data_uri: str,
        instruction: str,
        before_text: str = "",
        after_text: str = "",
    ) -> str:
        resp = self._client.chat.completions.create(
            model=self._model.model_id,
            max_tokens=self._model.max_output_tokens,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": build_prompt(instruction, before_text, after_text),
                        },
                        {"type": "image_url", "image_url": {"url": image_data_uri}},
                    ],
                },
            ],
        )
        if not resp.choices:
            raise VisionError("Empty response from vision model")
        return resp.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Describer
# ---------------------------------------------------------------------------


class ImageDescriber:
    """Generate short alt text for images via a :class:`VisionBackend`.

    Usage::

        describer = ImageDescriber(create_vision_backend("openai", key))
        alt = describer.describe(png_bytes, ImageContext(before_text="Figure 2"))
    """

    def __init__(self, backend: VisionBackend, instruction: str = DEFAULT_INSTRUCTION) -> None:
        self._backend = backend
        self._instruction = instruction

    @property
    def backend(self) -> VisionBackend:
        return self._backend

    def describe(
        self,
        image: bytes,
        context: ImageContext | None = None,
        content_type: str | None = None,
    ) -> str:
        """Describe *image*; returns :data:`FALLBACK_DESCRIPTION` on any failure.

        Args:
            image: Raw image bytes.
            context: Optional surrounding document text.
            content_type: MIME type of *image* (used only when the image
                cannot be re-encoded and is sent as-is).
        """
        context = context or ImageContext()
        try:
            prepared = prepare_for_vision(image, content_type)
            answer = self._backend.generate(
                prepared.to_data_uri(),
                self._instruction,
                before_text=context.before_text,
                after_text=context.after_text,
            )
            description = clean_description(answer)
            if not description:
                raise VisionError("Vision model returned an empty description")
        except Exception as e:
            _log.warning(
                "    Description failed (%s): %s: %s",
                self._backend.name, type(e).__name__, e,
            )
            return FALLBACK_DESCRIPTION
        return description
