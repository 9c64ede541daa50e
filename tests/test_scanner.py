"""Unit tests for scanner module (image reference detection)."""

import base64

import pytest

from md_image_host.scanner import (
    GENERIC_ALT_TEXTS,
    ImageKind,
    find_base64_images,
    find_local_images,
    find_remote_images,
    is_generic_alt_text,
    parse_data_uri,
    replace_images_with_alt,
    scan,
    strip_file_scheme,
)


_PNG_URI = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()

_MIXED_DOC = (
    "# Title\n"
    "![logo](./img/logo.png)\n"
    "Some text ![remote](https://example.com/a.jpg) inline.\n"
    f"![inline]({_PNG_URI})\n"
    "[not an image](./doc.md)\n"
)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassification:
    """Each reference belongs to exactly one category."""

    def test_local(self):
        refs = find_local_images(_MIXED_DOC)
        assert [r.locator for r in refs] == ["./img/logo.png"]
        assert refs[0].kind is ImageKind.LOCAL

    def test_remote(self):
        refs = find_remote_images(_MIXED_DOC)
        assert [r.locator for r in refs] == ["https://example.com/a.jpg"]

    def test_base64(self):
        refs = find_base64_images(_MIXED_DOC)
        assert [r.locator for r in refs] == [_PNG_URI]

    def test_categories_are_disjoint(self):
        spans = [
            (r.start, r.end)
            for kind in ImageKind
            for r in scan(_MIXED_DOC, kind)
        ]
        assert len(spans) == len(set(spans)) == 3

    def test_plain_link_ignored(self):
        assert scan("[text](./a.png)", ImageKind.LOCAL) == []

    def test_http_is_remote(self):
        refs = find_remote_images("![x](http://example.com/a.png)")
        assert len(refs) == 1
        assert find_local_images("![x](http://example.com/a.png)") == []

    def test_uppercase_scheme_is_remote(self):
        assert len(find_remote_images("![x](HTTPS://example.com/a.png)")) == 1
        assert find_local_images("![x](HTTPS://example.com/a.png)") == []

    def test_file_scheme_is_local(self):
        refs = find_local_images("![x](file:///tmp/a.png)")
        assert [r.locator for r in refs] == ["file:///tmp/a.png"]

    def test_absolute_path_is_local(self):
        refs = find_local_images("![x](/abs/b.jpg)")
        assert [r.locator for r in refs] == ["/abs/b.jpg"]

    def test_malformed_data_uri_is_base64(self):
        """Loose match: strict validation happens when decoding."""
        refs = find_base64_images("![x](data:image/png;base64)")
        assert len(refs) == 1
        assert find_local_images("![x](data:image/png;base64)") == []

    def test_empty_locator_not_matched(self):
        assert find_local_images("![x]()") == []


# ---------------------------------------------------------------------------
# Match details
# ---------------------------------------------------------------------------


class TestMatchDetails:
    """Offsets, span text and alt text of matches."""

    def test_offsets_and_span(self):
        text = "abc ![a](x.png) def"
        ref = find_local_images(text)[0]
        assert text[ref.start:ref.end] == ref.span_text == "![a](x.png)"
        assert ref.alt_text == "a"

    def test_empty_alt(self):
        ref = find_local_images("![](x.png)")[0]
        assert ref.alt_text == ""

    def test_locator_whitespace_stripped(self):
        ref = find_local_images("![a]( x.png )")[0]
        assert ref.locator == "x.png"
        assert ref.span_text == "![a]( x.png )"

    def test_document_order(self):
        text = "![1](a.png) ![2](b.png)\n![3](c.png)"
        assert [r.alt_text for r in find_local_images(text)] == ["1", "2", "3"]

    def test_duplicates_reported_separately(self):
        text = "![a](x.png)\n![a](x.png)"
        refs = find_local_images(text)
        assert len(refs) == 2
        assert refs[0].start != refs[1].start


# ---------------------------------------------------------------------------
# Generic alt text
# ---------------------------------------------------------------------------


class TestGenericAltText:

    @pytest.mark.parametrize("alt", ["", "   ", "image", "Image", " IMG ", "photo", "图片", "画像", "Bild"])
    def test_generic(self, alt):
        assert is_generic_alt_text(alt) is True

    @pytest.mark.parametrize("alt", ["logo", "An image of a cat", "images", "screenshot"])
    def test_not_generic(self, alt):
        assert is_generic_alt_text(alt) is False

    def test_set_is_lowercase(self):
        assert all(t == t.lower() for t in GENERIC_ALT_TEXTS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestReplaceImagesWithAlt:

    def test_replaces_all(self):
        line = "See ![chart](a.png) and ![](https://x/b.png)."
        assert replace_images_with_alt(line) == "See chart and ."

    def test_no_images(self):
        assert replace_images_with_alt("plain text") == "plain text"


class TestStripFileScheme:

    def test_strips(self):
        assert strip_file_scheme("file:///tmp/a.png") == "/tmp/a.png"

    def test_case_insensitive(self):
        assert strip_file_scheme("FILE:///tmp/a.png") == "/tmp/a.png"

    def test_unchanged(self):
        assert strip_file_scheme("./a.png") == "./a.png"


class TestParseDataUri:

    def test_valid(self):
        mime, data = parse_data_uri(_PNG_URI)
        assert mime == "image/png"
        assert data == b"\x89PNG fake"

    def test_line_wrapped_payload(self):
        payload = base64.b64encode(b"0123456789" * 10).decode()
        wrapped = "\n".join(payload[i:i + 20] for i in range(0, len(payload), 20))
        mime, data = parse_data_uri(f"data:image/jpeg;base64,{wrapped}")
        assert mime == "image/jpeg"
        assert data == b"0123456789" * 10

    def test_mime_lowercased(self):
        mime, _ = parse_data_uri("data:IMAGE/PNG;base64,aGVsbG8=")
        assert mime == "image/png"

    @pytest.mark.parametrize("uri", [
        "data:image/png;base64",
        "data:image/png,aGVsbG8=",
        "data:image;base64,aGVsbG8=",
        "data:image/png;base64,",
    ])
    def test_bad_shape(self, uri):
        with pytest.raises(ValueError):
            parse_data_uri(uri)

    def test_bad_payload(self):
        with pytest.raises(ValueError, match="Invalid base64 payload"):
            parse_data_uri("data:image/png;base64,@@@not-base64@@@")
