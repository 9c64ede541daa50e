"""Image reference scanning for Markdown documents.

Finds inline ``![alt](locator)`` image references by targeted regex scans
(no Markdown parsing).  References fall into three categories decided by
the locator prefix:

- **local**: neither ``http(s)://`` nor ``data:image/``
  (e.g. ``./img/a.png``, ``/abs/b.jpg``, ``file:///tmp/c.gif``)
- **remote**: ``http://`` or ``https://``
- **base64**: ``data:image/<type>;base64,<payload>``

Each category is scanned independently; the pipeline runs them in that
order.  Every match keeps the exact matched substring and its offsets so
that callers can substitute the span in place.

Usage::

    from md_image_host.scanner import ImageKind, scan

    for ref in scan(markdown, ImageKind.LOCAL):
        print(ref.alt_text, ref.locator, ref.start)
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from enum import Enum


class ImageKind(Enum):
    """Image reference category (one pipeline phase per kind)."""

    LOCAL = "local"
    """Path on the local filesystem, relative to the document directory."""

    REMOTE = "remote"
    """``http://`` or ``https://`` URL."""

    BASE64 = "base64"
    """Inline ``data:image/...`` URI."""


@dataclass(frozen=True)
class ImageReference:
    """One ``![alt](locator)`` match found by :func:`scan`."""

    kind: ImageKind
    span_text: str
    """Exact matched substring (``![alt](locator)``)."""
    alt_text: str
    locator: str
    """Path, URL, or data URI (surrounding whitespace stripped)."""
    start: int
    """Offset of the match in the scanned text."""
    end: int
    """Offset one past the end of the match."""


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_ALT = r"!\[(?P<alt>[^\]]*)\]"
_REMOTE_PREFIX = r"(?i:https?://)"
_BASE64_PREFIX = r"data:image/"

LOCAL_IMAGE_RE = re.compile(
    _ALT + r"\(\s*(?P<locator>(?!" + _REMOTE_PREFIX + r"|" + _BASE64_PREFIX
    + r")[^)\s][^)]*)\)"
)
"""Local reference: locator has no ``http(s)://`` or ``data:image/`` prefix."""

REMOTE_IMAGE_RE = re.compile(
    _ALT + r"\(\s*(?P<locator>" + _REMOTE_PREFIX + r"[^)]+)\)"
)
"""Remote reference: locator starts with ``http://`` or ``https://``."""

BASE64_IMAGE_RE = re.compile(
    _ALT + r"\(\s*(?P<locator>" + _BASE64_PREFIX + r"[^)]+)\)"
)
"""Base64 reference: locator starts with ``data:image/``.

Deliberately loose; the strict ``data:<mime>;base64,<payload>`` shape is
checked by :func:`parse_data_uri` when the payload is decoded.
"""

ANY_IMAGE_RE = re.compile(_ALT + r"\((?P<locator>[^)]*)\)")
"""Any inline image reference regardless of category."""

_PATTERNS: dict[ImageKind, re.Pattern[str]] = {
    ImageKind.LOCAL: LOCAL_IMAGE_RE,
    ImageKind.REMOTE: REMOTE_IMAGE_RE,
    ImageKind.BASE64: BASE64_IMAGE_RE,
}

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[A-Za-z0-9][A-Za-z0-9.+-]*/[A-Za-z0-9][A-Za-z0-9.+-]*)"
    r";base64,(?P<payload>.+)$",
    re.DOTALL,
)
"""Strict data URI shape: ``data:<type>/<subtype>;base64,<payload>``."""

_FILE_SCHEME = "file://"


# ---------------------------------------------------------------------------
# Generic alt text
# ---------------------------------------------------------------------------

GENERIC_ALT_TEXTS: frozenset[str] = frozenset({
    "image", "img", "picture", "pic", "photo",
    "图片", "图像", "圖片", "画像", "写真",
    "imagen", "bild", "immagine", "imagem", "изображение",
})
"""Placeholder alt texts treated as "no real alt text" (compared lowercased)."""


def is_generic_alt_text(alt_text: str) -> bool:
    """Return ``True`` if *alt_text* is empty or a generic placeholder."""
    cleaned = alt_text.strip().lower()
    return not cleaned or cleaned in GENERIC_ALT_TEXTS


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def scan(text: str, kind: ImageKind) -> list[ImageReference]:
    """Return all references of one *kind* in *text*, in document order."""
    refs: list[ImageReference] = []
    for m in _PATTERNS[kind].finditer(text):
        refs.append(ImageReference(
            kind=kind,
            span_text=m.group(0),
            alt_text=m.group("alt"),
            locator=m.group("locator").strip(),
            start=m.start(),
            end=m.end(),
        ))
    return refs


def find_local_images(text: str) -> list[ImageReference]:
    return scan(text, ImageKind.LOCAL)


def find_remote_images(text: str) -> list[ImageReference]:
    return scan(text, ImageKind.REMOTE)


def find_base64_images(text: str) -> list[ImageReference]:
    return scan(text, ImageKind.BASE64)


def replace_images_with_alt(line: str) -> str:
    """Replace every image reference in *line* with its alt text."""
    return ANY_IMAGE_RE.sub(lambda m: m.group("alt"), line)


# ---------------------------------------------------------------------------
# Locator helpers
# ---------------------------------------------------------------------------


def strip_file_scheme(locator: str) -> str:
    """Remove a leading ``file://`` scheme from a local locator."""
    if locator.lower().startswith(_FILE_SCHEME):
        return locator[len(_FILE_SCHEME):]
    return locator


def parse_data_uri(uri: str) -> tuple[str, bytes]:
    """Strictly parse a ``data:<mime>;base64,<payload>`` URI.

    Whitespace inside the payload (line-wrapped base64) is ignored.

    Returns:
        ``(mime_type, decoded_bytes)``.

    Raises:
        ValueError: If the URI does not have the strict shape or the payload
            is not valid base64.
    """
    m = _DATA_URI_RE.match(uri.strip())
    if not m:
        raise ValueError("Invalid base64 data URI format")
    payload = re.sub(r"\s+", "", m.group("payload"))
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    if not data:
        raise ValueError("Empty base64 payload")
    return m.group("mime").lower(), data
