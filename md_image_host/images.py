"""Image byte helpers: vision-request preparation and MIME/extension mapping.

The vision oracle is always called with a bounded image: the source is
decoded with pymupdf, scaled to fit inside ``VISION_MAX_SIZE`` (never
enlarged), flattened to RGB without alpha and re-encoded as JPEG at
``VISION_JPEG_QUALITY``.  Formats pymupdf cannot decode (SVG, some WebP
builds, corrupt data) are passed through unchanged.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from dataclasses import dataclass

import pymupdf

_log = logging.getLogger("images")

VISION_MAX_SIZE = 800
"""Bounding box (pixels, both axes) for images sent to the oracle."""

VISION_JPEG_QUALITY = 80
"""JPEG quality used when re-encoding images for the oracle."""

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPE_TO_EXT: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
    "image/tiff": ".tiff",
    "image/x-icon": ".ico",
    "image/avif": ".avif",
    "image/heic": ".heic",
}
"""Preferred file extension per image content type."""


@dataclass(frozen=True)
class PreparedImage:
    """Image bytes ready to embed in a vision request."""

    data: bytes
    media_type: str
    resized: bool = False
    """``True`` when the bytes were re-encoded by :func:`prepare_for_vision`."""

    def to_data_uri(self) -> str:
        return to_data_uri(self.data, self.media_type)


def extension_for_content_type(content_type: str | None, default: str = ".jpg") -> str:
    """Return a file extension (with dot) for an HTTP/data-URI content type.

    Parameters such as ``; charset=...`` are ignored.
    """
    if not content_type:
        return default
    ct = content_type.split(";")[0].strip().lower()
    if ct in CONTENT_TYPE_TO_EXT:
        return CONTENT_TYPE_TO_EXT[ct]
    return mimetypes.guess_extension(ct) or default


def content_type_for_filename(filename: str) -> str:
    """Guess the content type of *filename* from its extension."""
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE


def to_data_uri(data: bytes, media_type: str) -> str:
    """Encode *data* as a ``data:<media_type>;base64,...`` URI."""
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def _fit_inside(width: int, height: int, max_size: int) -> tuple[int, int]:
    """Scale ``(width, height)`` down to fit a ``max_size`` square, keeping aspect."""
    scale = min(max_size / width, max_size / height, 1.0)
    return max(1, round(width * scale)), max(1, round(height * scale))


def prepare_for_vision(
    data: bytes,
    content_type: str | None = None,
    max_size: int = VISION_MAX_SIZE,
    quality: int = VISION_JPEG_QUALITY,
) -> PreparedImage:
    """Downsize and re-encode *data* for a vision request.

    Args:
        data: Source image bytes (any format pymupdf can decode).
        content_type: MIME type of *data*, used only for the pass-through
            fallback.
        max_size: Maximum width and height of the result in pixels.
        quality: JPEG quality (0-100).

    Returns:
        :class:`PreparedImage` with JPEG bytes, or the original bytes when
        they cannot be decoded.
    """
    try:
        pix = pymupdf.Pixmap(data)
        if pix.alpha:
            pix = pymupdf.Pixmap(pix, 0)
        if pix.colorspace is None or pix.colorspace.n not in (1, 3):
            pix = pymupdf.Pixmap(pymupdf.csRGB, pix)
        width, height = _fit_inside(pix.width, pix.height, max_size)
        if (width, height) != (pix.width, pix.height):
            pix = pymupdf.Pixmap(pix, width, height, None)
        jpeg = pix.tobytes("jpg", jpg_quality=quality)
    except Exception as e:
        _log.debug("    Could not re-encode image for vision (%s), sending as-is", e)
        return PreparedImage(data=data, media_type=content_type or "image/jpeg")

    _log.debug(
        "    Prepared image for vision: %d -> %d bytes (%dx%d)",
        len(data), len(jpeg), width, height,
    )
    return PreparedImage(data=jpeg, media_type="image/jpeg", resized=True)
