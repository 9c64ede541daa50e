"""Shared test fixtures and helpers for md-image-host tests."""

from __future__ import annotations

import json
import re
import uuid

import httpx
import pymupdf
import pytest

from md_image_host.asset_client import AssetClient

STORE_URL = "http://store.test"
"""Base URL of the in-memory asset store."""

HOSTED_PREFIX = "https://assets.example.com/images"
"""Prefix of every ``fullUrl`` returned by :class:`FakeAssetStore`."""

COLLECTION_ID = "3f2b8c1e-5d4a-4b6f-9a7e-1c2d3e4f5a6b"
"""A well-formed UUIDv4 collection id."""

_FILENAME_RE = re.compile(rb'filename="(?P<name>[^"]*)"')
_PART_CT_RE = re.compile(rb"Content-Type: (?P<ct>[^\r\n]+)")


def make_png(width: int = 4, height: int = 4, gray: int = 200) -> bytes:
    """Build a solid RGB PNG of the given size with pymupdf."""
    pix = pymupdf.Pixmap(pymupdf.csRGB, pymupdf.IRect(0, 0, width, height), False)
    pix.clear_with(gray)
    return pix.tobytes("png")


class FakeAssetStore:
    """In-memory asset store served through ``httpx.MockTransport``.

    Requests to ``store.test`` hit the store API; any other host is served
    from :attr:`remote` (URL -> ``(status, body, content_type)``), 404 when
    missing.

    Args:
        collections: Existing collections as ``{name: id}``.
        fail_uploads: Filenames whose upload answers HTTP 500.
        created_id: Id returned when a collection is created.
        email: Accepted login email.
        password: Accepted login password.
    """

    def __init__(
        self,
        collections: dict[str, str] | None = None,
        fail_uploads: set[str] | None = None,
        created_id: str = COLLECTION_ID,
        email: str = "user@example.com",
        password: str = "secret",
    ) -> None:
        self.collections = dict(collections or {})
        self.fail_uploads = set(fail_uploads or ())
        self.created_id = created_id
        self.email = email
        self.password = password
        self.remote: dict[str, tuple[int, bytes, str]] = {}
        self.requests: list[httpx.Request] = []
        self.uploads: list[dict] = []
        self.fail_collections = False

    # -- Introspection ---------------------------------------------------------

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        """Store requests matching *method* and *path*."""
        return [
            r for r in self.requests
            if r.url.host == "store.test" and r.method == method and r.url.path == path
        ]

    def remote_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host != "store.test"]

    # -- Transport -------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, **kwargs) -> AssetClient:
        """An :class:`AssetClient` wired to this store (API key by default)."""
        kwargs.setdefault("api_key", "test-key")
        return AssetClient(STORE_URL, transport=self.transport(), **kwargs)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host != "store.test":
            status, body, content_type = self.remote.get(
                str(request.url), (404, b"not found", "text/plain"),
            )
            return httpx.Response(status, content=body, headers={"content-type": content_type})

        path = request.url.path
        if request.method == "POST" and path == "/auth/login":
            body = json.loads(request.content)
            if body.get("email") == self.email and body.get("password") == self.password:
                return httpx.Response(200, json={"token": "session-token"})
            return httpx.Response(401, json={"error": "Invalid credentials"})

        if not self._authorized(request):
            return httpx.Response(401, json={"error": "Unauthorized"})

        if path == "/v1/collections":
            if self.fail_collections:
                return httpx.Response(500, json={"error": "database unavailable"})
            if request.method == "GET":
                return httpx.Response(200, json={"collections": [
                    {"collectionId": cid, "collectionName": name}
                    for name, cid in self.collections.items()
                ]})
            name = json.loads(request.content)["name"]
            self.collections[name] = self.created_id
            return httpx.Response(
                201, json={"collectionId": self.created_id, "collectionName": name},
            )

        m = re.fullmatch(r"/v1/collections/(?P<cid>[^/]+)/assets", path)
        if m and request.method == "POST":
            return self._upload(m.group("cid"), request)

        return httpx.Response(404, json={"error": "Not found"})

    def _authorized(self, request: httpx.Request) -> bool:
        return (
            request.headers.get("x-api-key") == "test-key"
            or request.headers.get("authorization") == "Bearer session-token"
        )

    def _upload(self, collection_id: str, request: httpx.Request) -> httpx.Response:
        content = request.read()
        name_match = _FILENAME_RE.search(content)
        filename = name_match.group("name").decode() if name_match else ""
        ct_match = _PART_CT_RE.search(content)
        content_type = ct_match.group("ct").decode() if ct_match else ""
        if filename in self.fail_uploads:
            return httpx.Response(500, json={"error": "storage failure"})

        file_id = str(uuid.uuid4())
        ext = "." + filename.rsplit(".", 1)[-1] if "." in filename else ""
        self.uploads.append({
            "filename": filename,
            "content_type": content_type,
            "collection_id": collection_id,
            "body": content,
        })
        return httpx.Response(201, json={
            "collectionId": collection_id,
            "images": [{
                "originalName": filename,
                "fileId": file_id,
                "fileExtension": ext,
                "fullUrl": f"{HOSTED_PREFIX}/{collection_id}/{file_id}{ext}",
            }],
        })


class FakeBackend:
    """Vision backend returning a canned answer and recording every call."""

    name = "fake"

    def __init__(self, answer: str = "A red bicycle", error: Exception | None = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: list[dict] = []

    def generate(
        self,
        image_data_uri: str,
        instruction: str,
        before_text: str = "",
        after_text: str = "",
    ) -> str:
        self.calls.append({
            "image_data_uri": image_data_uri,
            "instruction": instruction,
            "before_text": before_text,
            "after_text": after_text,
        })
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def store() -> FakeAssetStore:
    """Empty asset store (the default collection does not exist yet)."""
    return FakeAssetStore()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()
