"""HTTP client for the image asset store.

Consumed endpoints (all relative to the store's base URL):

- ``POST /auth/login``                       → ``{"token": ...}``
- ``GET  /v1/collections``                   → ``{"collections": [{collectionId, collectionName}]}``
- ``POST /v1/collections``  ``{"name": ...}`` → ``{collectionId, collectionName}``
- ``POST /v1/collections/{id}/assets``       multipart field ``images``
  → ``{"collectionId": ..., "images": [{originalName, fileId, fileExtension, fullUrl}]}``
- ``GET  /images/{collectionId}/{fileId}``    → raw asset bytes

Authentication uses an ``x-api-key`` header when an API key is configured,
otherwise a bearer token obtained from ``/auth/login``.

Failures are split into two families:

- **fatal** (:class:`AuthError`, :class:`CollectionError`): the run cannot
  start without credentials and a destination collection.
- **per-item** (:class:`ImageSourceError`, :class:`UploadError`): one image
  could not be loaded or stored; callers log and move on.
"""

from __future__ import annotations

import itertools
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

import httpx

from md_image_host.images import content_type_for_filename, extension_for_content_type
from md_image_host.scanner import parse_data_uri, strip_file_scheme

_log = logging.getLogger("assets")

DEFAULT_TIMEOUT_S = 30.0
"""Timeout for every asset-store and remote-image request."""

_UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_REMOTE_FALLBACK_STEM = "remote-image"
_BASE64_STEM = "base64-image"
_UPLOAD_FIELD = "images"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AssetStoreError(Exception):
    """Base class for asset-store failures."""


class AuthError(AssetStoreError):
    """Missing or rejected credentials (fatal)."""


class CollectionError(AssetStoreError):
    """Collection lookup/creation failed or returned a malformed id (fatal)."""


class ImageSourceError(AssetStoreError):
    """An image's bytes could not be obtained (per-item)."""


class UploadError(AssetStoreError):
    """The store rejected or failed an upload (per-item)."""


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Collection:
    collection_id: str
    name: str


@dataclass(frozen=True)
class ImagePayload:
    """Loaded image bytes plus the metadata needed to upload them."""

    data: bytes
    filename: str
    content_type: str


@dataclass(frozen=True)
class UploadResult:
    """Asset metadata returned by the store for one uploaded image."""

    asset_id: str
    file_extension: str
    hosted_url: str
    """Canonical URL as reported by the server (``fullUrl``)."""
    original_name: str = ""


def is_uuid4(value: object) -> bool:
    """Return ``True`` if *value* is a well-formed UUIDv4 string."""
    return isinstance(value, str) and bool(_UUID4_RE.match(value))


def _is_nonempty_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _error_detail(exc: Exception) -> str:
    """Extract a readable message, preferring the server's ``error`` field."""
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return f"{exc.response.status_code} {body['error']}"
        return f"HTTP {exc.response.status_code}"
    return f"{type(exc).__name__}: {exc}"


# ---------------------------------------------------------------------------
# Loading image bytes
# ---------------------------------------------------------------------------


class ImageLoader:
    """Obtain the bytes behind an image locator (file, URL, or data URI).

    Owns the HTTP client used for remote downloads.  Used by
    :class:`AssetClient` and, without any asset store, by describe-only
    runs.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base64_counter = itertools.count(1)
        self._http = httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def __enter__(self) -> ImageLoader:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def load_local(self, path: str | Path, base_dir: Path | None = None) -> ImagePayload:
        """Read a local image.

        ``file://`` prefixes are stripped; relative paths resolve against
        *base_dir* (the Markdown document's directory), not the process
        working directory.  A percent-encoded path (``my%20img.png``) is
        tried decoded when the literal path does not exist.

        Raises:
            ImageSourceError: File missing or unreadable.
        """
        resolved = resolve_local_path(str(path), base_dir)
        if not resolved.is_file():
            raise ImageSourceError(f"Local image not found: {resolved}")
        try:
            data = resolved.read_bytes()
        except OSError as e:
            raise ImageSourceError(f"Cannot read local image {resolved}: {e}") from e
        return ImagePayload(
            data=data,
            filename=resolved.name,
            content_type=content_type_for_filename(resolved.name),
        )

    def fetch_remote(self, url: str) -> ImagePayload:
        """Download a remote image.

        The filename is the last URL path segment; when the path has none,
        ``remote-image`` plus an extension inferred from the response
        content type is used.

        Raises:
            ImageSourceError: Network failure or non-2xx response.
        """
        try:
            resp = self._http.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageSourceError(
                f"Failed to download remote image {url}: {_error_detail(e)}"
            ) from e

        content_type = resp.headers.get("content-type", "").split(";")[0].strip()
        segment = unquote(PurePosixPath(urlparse(url).path).name)
        if segment:
            filename = segment
            if not content_type:
                content_type = content_type_for_filename(segment)
        else:
            filename = _REMOTE_FALLBACK_STEM + extension_for_content_type(content_type)
        return ImagePayload(
            data=resp.content,
            filename=filename,
            content_type=content_type or "image/jpeg",
        )

    def decode_data_uri(self, data_uri: str) -> ImagePayload:
        """Decode a ``data:<mime>;base64,<payload>`` URI.

        Raises:
            ImageSourceError: Malformed URI or payload.
        """
        try:
            content_type, data = parse_data_uri(data_uri)
        except ValueError as e:
            raise ImageSourceError(str(e)) from e
        filename = (
            f"{_BASE64_STEM}-{next(self._base64_counter)}"
            f"{extension_for_content_type(content_type, default='.png')}"
        )
        return ImagePayload(data=data, filename=filename, content_type=content_type)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AssetClient:
    """Asset-store client with collection resolution and image upload.

    Usage::

        with AssetClient("http://localhost:3000", api_key="...") as assets:
            collection_id = assets.ensure_collection("markdown-images")
            result = assets.upload_local(Path("img.png"), collection_id)
            print(result.hosted_url)

    One instance serves one run; it keeps the login token and the last
    resolved collection but no cross-instance state.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        email: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Asset store root URL (e.g. ``http://localhost:3000``).
            api_key: API key sent as ``x-api-key``; takes precedence over
                email/password.
            email: Login email (used with *password* when no API key).
            password: Login password.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests use
                ``httpx.MockTransport``).  Also used for remote image
                downloads.
        """
        self._api_key = api_key
        self._email = email
        self._password = password
        self._token: str | None = None
        self._collection: Collection | None = None

        headers = {"x-api-key": api_key} if api_key else {}
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self.loader = ImageLoader(timeout=timeout, transport=transport)

    def __enter__(self) -> AssetClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()
        self.loader.close()

    # -- Auth ----------------------------------------------------------------

    @property
    def authenticated(self) -> bool:
        return bool(self._api_key or self._token)

    def initialize(self) -> None:
        """Make sure requests are authenticated.

        API-key clients need nothing; otherwise logs in once with
        email/password.

        Raises:
            AuthError: No credentials configured, or login rejected.
        """
        if self.authenticated:
            return
        if not (self._email and self._password):
            raise AuthError("Either API key or email/password must be provided")
        self._login()

    def _login(self) -> None:
        try:
            resp = self._http.post(
                "/auth/login",
                json={"email": self._email, "password": self._password},
            )
            resp.raise_for_status()
            token = resp.json().get("token")
        except (httpx.HTTPError, ValueError) as e:
            raise AuthError(f"Login failed: {_error_detail(e)}") from e
        if not token:
            raise AuthError("Login failed: no token in response")
        self._token = token
        self._http.headers["Authorization"] = f"Bearer {token}"
        _log.debug("Logged in to asset store as %s", self._email)

    # -- Collections -----------------------------------------------------------

    def ensure_collection(self, name: str) -> str:
        """Return the id of collection *name*, creating it if absent.

        Repeated calls with the same name reuse the resolved id.

        Raises:
            CollectionError: On any transport/HTTP failure, or when the
                store reports an id that is not a UUIDv4.
            AuthError: When credentials are missing or rejected.
        """
        if self._collection is not None and self._collection.name == name:
            return self._collection.collection_id

        self.initialize()
        try:
            resp = self._http.get("/v1/collections")
            resp.raise_for_status()
            collections = resp.json().get("collections") or []
            existing = next(
                (c for c in collections if c.get("collectionName") == name),
                None,
            )
            if existing is not None:
                collection_id = existing.get("collectionId")
                _log.debug("Found existing collection %r: %s", name, collection_id)
            else:
                resp = self._http.post("/v1/collections", json={"name": name})
                resp.raise_for_status()
                collection_id = resp.json().get("collectionId")
                _log.info("Created collection %r: %s", name, collection_id)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise CollectionError(
                f"Failed to ensure collection {name!r}: {_error_detail(e)}"
            ) from e

        if not is_uuid4(collection_id):
            raise CollectionError(
                f"Server returned invalid collection ID format: {collection_id!r}"
            )
        self._collection = Collection(collection_id=collection_id, name=name)
        return collection_id

    # -- Uploading -------------------------------------------------------------

    def upload_bytes(
        self,
        data: bytes,
        filename: str,
        content_type: str,
        collection_id: str,
    ) -> UploadResult:
        """Upload one image and return the store's metadata for it.

        Raises:
            UploadError: Transport failure, non-2xx status, or a response
                without image metadata.
        """
        self.initialize()
        try:
            resp = self._http.post(
                f"/v1/collections/{collection_id}/assets",
                files={_UPLOAD_FIELD: (filename, data, content_type)},
            )
            resp.raise_for_status()
            image = resp.json()["images"][0]
            result = UploadResult(
                asset_id=image["fileId"],
                file_extension=image.get("fileExtension", ""),
                hosted_url=image["fullUrl"],
                original_name=image.get("originalName", filename),
            )
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            raise UploadError(f"Failed to upload {filename}: {_error_detail(e)}") from e
        if not (_is_nonempty_str(result.asset_id) and _is_nonempty_str(result.hosted_url)):
            raise UploadError(
                f"Failed to upload {filename}: response has no fileId/fullUrl"
            )
        _log.debug("    Uploaded %s (%d bytes) -> %s", filename, len(data), result.hosted_url)
        return result

    def upload_payload(self, payload: ImagePayload, collection_id: str) -> UploadResult:
        return self.upload_bytes(
            payload.data, payload.filename, payload.content_type, collection_id,
        )

    def upload_local(
        self, path: str | Path, collection_id: str, base_dir: Path | None = None,
    ) -> UploadResult:
        """Upload a local file (existence is checked before any request)."""
        return self.upload_payload(self.loader.load_local(path, base_dir), collection_id)

    def upload_remote(self, url: str, collection_id: str) -> UploadResult:
        """Download *url* and upload its bytes."""
        return self.upload_payload(self.loader.fetch_remote(url), collection_id)

    def upload_base64(self, data_uri: str, collection_id: str) -> UploadResult:
        """Decode *data_uri* and upload its bytes."""
        return self.upload_payload(self.loader.decode_data_uri(data_uri), collection_id)

    # -- Fetching stored assets ------------------------------------------------

    def fetch_asset(self, collection_id: str, asset_id: str) -> bytes:
        """Download a stored asset's bytes.

        Raises:
            ImageSourceError: Asset missing or request failed.
        """
        try:
            resp = self._http.get(f"/images/{collection_id}/{asset_id}")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageSourceError(
                f"Failed to fetch asset {collection_id}/{asset_id}: {_error_detail(e)}"
            ) from e
        return resp.content


def resolve_local_path(locator: str, base_dir: Path | None = None) -> Path:
    """Resolve a local image locator to an absolute path.

    Strips ``file://``, resolves relative paths against *base_dir*, and
    falls back to the percent-decoded path when the literal one is missing.
    """
    raw = strip_file_scheme(locator)
    candidates = [raw]
    decoded = unquote(raw)
    if decoded != raw:
        candidates.append(decoded)

    resolved: list[Path] = []
    for candidate in candidates:
        p = Path(candidate).expanduser()
        if not p.is_absolute() and base_dir is not None:
            p = base_dir / p
        p = p.resolve()
        if p.is_file():
            return p
        resolved.append(p)
    return resolved[0]
