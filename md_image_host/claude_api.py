"""Claude API client wrapper with retry logic for vision requests.

Provides one call, :meth:`ClaudeApi.send_message`, that retries transient
errors with exponential backoff and returns the response text together with
its token usage.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass

import anthropic

from md_image_host.models import VisionModelConfig

_log = logging.getLogger("claude_api")

_DEFAULT_MAX_RETRIES = 3
"""Default maximum total attempts per request (1 = no retry)."""

_RETRY_MIN_DELAY_S = 1
"""Initial retry delay in seconds."""

_RETRY_MAX_DELAY_S = 30
"""Maximum retry delay in seconds (cap for exponential backoff)."""


def _is_retryable(exc: BaseException) -> bool:
    """Classify whether an exception is transient and worth retrying.

    Returns ``True`` for network/transport errors and server-side failures
    (rate limit, 5xx, overloaded).  Returns ``False`` for permanent client
    errors (bad request, auth, unsupported image).

    ``httpcore`` transport errors raised mid-stream are recognized by class
    name so that ``httpcore`` is not a hard import.
    """
    if isinstance(exc, (anthropic.APIConnectionError, anthropic.APITimeoutError)):
        return True
    if isinstance(exc, anthropic.APIStatusError):
        return exc.status_code in (429, 500, 502, 503, 529)
    type_name = type(exc).__name__
    return type_name in ("RemoteProtocolError", "ReadError", "ProtocolError")


@dataclass
class ApiResponse:
    """Text and usage from a single Claude API call."""

    text: str
    input_tokens: int
    output_tokens: int
    stop_reason: str


class ClaudeApi:
    """Claude API client wrapper with retry and streaming.

    Usage::

        api = ClaudeApi(client, CLAUDE, max_retries=3)
        messages = [{"role": "user", "content": [image_block, text_block]}]
        response = api.send_message(system, messages, retry_context="img.png")
        print(response.text)
    """

    def __init__(
        self,
        client: anthropic.Anthropic,
        model: VisionModelConfig,
        max_retries: int = _DEFAULT_MAX_RETRIES,
    ) -> None:
        """Initialize the wrapper.

        Args:
            client: Authenticated Anthropic client.
            model: Vision model configuration (model_id, max_output_tokens).
            max_retries: Maximum number of attempts per request (1 = no retry).
        """
        self._client = client
        self._model = model
        self._max_retries = max(1, max_retries)

    @property
    def model(self) -> VisionModelConfig:
        """The model configuration used by this API client."""
        return self._model

    def send_message(
        self,
        system: str,
        messages: list[dict],
        retry_context: str = "",
    ) -> ApiResponse:
        """Send a message to Claude with automatic retry.

        Transient errors are retried with exponential backoff (1, 2, 4, ...
        capped at 30 s, plus jitter).  Permanent errors are raised
        immediately.

        Args:
            system: System prompt text.
            messages: Messages in Anthropic messages API format.
            retry_context: Optional label for log messages.

        Raises:
            anthropic.APIError: On permanent API errors or when retries are
                exhausted.
        """
        start = time.time()
        context_str = f" ({retry_context})" if retry_context else ""

        for attempt in range(1, self._max_retries + 1):
            try:
                resp = self._stream_message(system, messages)
                _log.debug(
                    "API call%s: %.1fs, stop=%s, %d+%d tokens",
                    context_str, time.time() - start, resp.stop_reason,
                    resp.input_tokens, resp.output_tokens,
                )
                return resp
            except Exception as e:
                if not _is_retryable(e) or attempt == self._max_retries:
                    raise
                base = min(
                    _RETRY_MIN_DELAY_S * (2 ** (attempt - 1)),
                    _RETRY_MAX_DELAY_S,
                )
                delay = base + random.uniform(0, base * 0.25)
                _log.warning(
                    "API call%s: %s (attempt %d/%d, retrying in %.0fs)",
                    context_str,
                    f"{type(e).__name__}: {e}",
                    attempt, self._max_retries, delay,
                )
                time.sleep(delay)

        # Unreachable: loop always returns or raises
        raise AssertionError("Retry loop exited without returning or raising")

    def _stream_message(self, system: str, messages: list[dict]) -> ApiResponse:
        """Send one request and collect the streamed response."""
        with self._client.messages.stream(
            model=self._model.model_id,
            max_tokens=self._model.max_output_tokens,
            system=system,
            messages=messages,
        ) as stream:
            message = stream.get_final_message()

        text = ""
        for block in message.content:
            if block.type == "text":
                text += block.text

        return ApiResponse(
            text=text,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            stop_reason=message.stop_reason,
        )
