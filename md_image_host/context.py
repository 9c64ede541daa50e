"""Prompt context extraction around an image reference.

Given the offsets of an image reference, finds the nearest meaningful line
before and after it so the vision oracle can describe the image in terms of
the surrounding prose.  Blank lines and purely structural lines (rules,
fences, table separators) are skipped; neighbouring image references
contribute their alt text instead of their raw Markdown.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from md_image_host.scanner import replace_images_with_alt

_log = logging.getLogger("context")

MAX_CONTEXT_CHARS = 300
"""Upper bound for each context fragment sent to the oracle."""

_STRUCTURAL_LINE_RE = re.compile(r"^[\s\-*_=`~|:#>+]*$")
"""Lines made only of Markdown structure characters (``---``, ``|--|``, ``>``)."""

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ImageContext:
    """Text surrounding an image reference (empty strings when absent)."""

    before_text: str = ""
    after_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.before_text and not self.after_text


def _meaningful(fragment: str) -> str:
    """Return the prompt-ready form of *fragment*, or ``""`` if it has no content."""
    if _STRUCTURAL_LINE_RE.match(fragment):
        return ""
    text = replace_images_with_alt(fragment)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if _STRUCTURAL_LINE_RE.match(text):
        return ""
    if len(text) > MAX_CONTEXT_CHARS:
        text = text[:MAX_CONTEXT_CHARS].rstrip()
    return text


def _is_unterminated(fragment: str) -> bool:
    """Check whether *fragment* opens an image/link that it never closes.

    Looks at the last ``![`` or ``](`` in the fragment; the fragment is
    unterminated when no ``)`` follows it.
    """
    opener = max(fragment.rfind("!["), fragment.rfind("]("))
    if opener < 0:
        return False
    return ")" not in fragment[opener:]


def _search_before(lines: list[str], line_idx: int) -> str:
    idx = line_idx - 1
    while idx >= 0:
        text = _meaningful(lines[idx])
        if text:
            return text
        idx -= 1
    return ""


def _search_after(lines: list[str], line_idx: int) -> str:
    idx = line_idx + 1
    while idx < len(lines):
        fragment = lines[idx]
        # Join a dangling image/link with its continuation lines.
        while _is_unterminated(fragment) and idx + 1 < len(lines):
            idx += 1
            fragment += " " + lines[idx]
        text = _meaningful(fragment)
        if text:
            return text
        idx += 1
    return ""


def extract_context(text: str, start: int, end: int | None = None) -> ImageContext:
    """Derive before/after context for the reference spanning ``[start, end)``.

    Args:
        text: Full document text the offsets refer to.
        start: Offset of the first character of the reference.
        end: Offset one past the reference (defaults to *start*).  The
            forward search starts on the line after the one containing
            ``end - 1`` so multi-line references are not read as context.

    Returns:
        :class:`ImageContext`; ``before_text`` is empty for a reference on
        the first line and ``after_text`` is empty on the last line.
    """
    if end is None or end <= start:
        end = start + 1
    lines = text.split("\n")
    # Line index = number of newlines before the offset.
    first_line = text[:start].count("\n")
    last_line = text[:end - 1].count("\n")

    context = ImageContext(
        before_text=_search_before(lines, first_line),
        after_text=_search_after(lines, last_line),
    )
    _log.debug(
        "    Context: before=%d chars, after=%d chars",
        len(context.before_text), len(context.after_text),
    )
    return context
