"""Single-document image migration pipeline.

Drives the rewrite of one Markdown document:

1. **Collection resolution**: the destination collection is resolved (or
   created) once; failure aborts the run before any text changes.
2. **Local phase**: ``![alt](./path.png)`` references.
3. **Remote phase**: ``![alt](https://...)`` references.
4. **Base64 phase**: ``![alt](data:image/...;base64,...)`` references.

Each phase scans the *current* text once at phase entry.  References are
then handled strictly in document order: load bytes, optionally describe,
upload, substitute.  A failing reference is logged and its span is left
byte-identical; the phase continues with the next one.

Substitution is position-aware: the span recorded at phase entry is
replaced at its own offset (shifted by the length change of earlier
substitutions in the same phase), so identical duplicate tags are each
rewritten in place.  Uploads are memoized per run by source, so duplicates
reuse one hosted URL.

With ``assets=None`` the pipeline runs in describe-only mode: collection
resolution is skipped, locators are kept, and only generic alt text is
regenerated.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from md_image_host.asset_client import (
    AssetClient,
    ImageLoader,
    ImagePayload,
    ImageSourceError,
    UploadResult,
    resolve_local_path,
)
from md_image_host.context import extract_context
from md_image_host.describer import ImageDescriber
from md_image_host.scanner import ImageKind, ImageReference, is_generic_alt_text, scan

_log = logging.getLogger("pipeline")

DEFAULT_COLLECTION = "markdown-images"
"""Collection used when none is configured."""


# ---------------------------------------------------------------------------
# States and results
# ---------------------------------------------------------------------------


class PipelineState(Enum):
    """Lifecycle of one :class:`MarkdownAssetPipeline` run."""

    INIT = "init"
    COLLECTION_RESOLVED = "collection_resolved"
    LOCAL_PHASE = "local_phase"
    REMOTE_PHASE = "remote_phase"
    BASE64_PHASE = "base64_phase"
    DONE = "done"
    ABORTED = "aborted"


PHASES: tuple[tuple[ImageKind, PipelineState], ...] = (
    (ImageKind.LOCAL, PipelineState.LOCAL_PHASE),
    (ImageKind.REMOTE, PipelineState.REMOTE_PHASE),
    (ImageKind.BASE64, PipelineState.BASE64_PHASE),
)
"""Phase order; later phases read the text produced by earlier ones."""


@dataclass
class PhaseStats:
    """Per-phase counters."""

    kind: ImageKind
    found: int = 0
    replaced: int = 0
    reused: int = 0
    """References served from an earlier upload of the same source."""
    described: int = 0
    """References written with a generated alt text."""
    failed: int = 0
    skipped: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class PipelineResult:
    """Outcome of :meth:`MarkdownAssetPipeline.run`."""

    markdown: str
    state: PipelineState
    collection_id: str | None = None
    phases: list[PhaseStats] = field(default_factory=list)

    @property
    def replaced(self) -> int:
        return sum(p.replaced for p in self.phases)

    @property
    def failed(self) -> int:
        return sum(p.failed for p in self.phases)

    @property
    def described(self) -> int:
        return sum(p.described for p in self.phases)


# ---------------------------------------------------------------------------
# Internal bookkeeping
# ---------------------------------------------------------------------------


@dataclass
class _SourceEntry:
    """Per-run memo for one image source (path, URL, or data URI)."""

    payload: ImagePayload | None = None
    upload: UploadResult | None = None
    failed: bool = False


class _EditLog:
    """Maps offsets in the working text back to the original document.

    Every substitution is recorded as ``(start, old_len, new_len)`` in the
    coordinates of the text it was applied to.
    """

    def __init__(self) -> None:
        self._edits: list[tuple[int, int, int]] = []

    def record(self, start: int, old_len: int, new_len: int) -> None:
        self._edits.append((start, old_len, new_len))

    def to_original(self, pos: int) -> int:
        for start, old_len, new_len in reversed(self._edits):
            if pos >= start + new_len:
                pos -= new_len - old_len
            elif pos > start:
                pos = start
        return pos


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class MarkdownAssetPipeline:
    """Rewrite image references of one document to hosted URLs.

    One instance processes one document: it owns the resolved collection
    id, the upload memo, and the working text.  Use separate instances for
    separate documents.

    Usage::

        with AssetClient(url, api_key=key) as assets:
            pipeline = MarkdownAssetPipeline(
                assets, "docs", base_dir=md_path.parent, describer=describer,
            )
            result = pipeline.run(md_path.read_text(encoding="utf-8"))
    """

    def __init__(
        self,
        assets: AssetClient | None,
        collection_name: str = DEFAULT_COLLECTION,
        base_dir: Path | None = None,
        describer: ImageDescriber | None = None,
        loader: ImageLoader | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            assets: Asset store client, or ``None`` for describe-only mode.
            collection_name: Destination collection (resolved once per run).
            base_dir: Directory relative local paths resolve against
                (normally the Markdown document's directory).
            describer: Optional alt-text generator for references whose alt
                text is empty or generic.
            loader: Image loader; defaults to ``assets.loader``, or a fresh
                :class:`ImageLoader` in describe-only mode.

        Raises:
            ValueError: Describe-only mode without a describer.
        """
        if assets is None and describer is None:
            raise ValueError("Describe-only mode requires an image describer")
        self._owns_loader = loader is None and assets is None
        if loader is None:
            loader = assets.loader if assets is not None else ImageLoader()
        self._loader = loader
        self._assets = assets
        self._collection_name = collection_name
        self._base_dir = base_dir if base_dir is not None else Path.cwd()
        self._describer = describer

        self._state = PipelineState.INIT
        self._collection_id: str | None = None
        self._sources: dict[str, _SourceEntry] = {}
        self._hosted_urls: set[str] = set()
        self._edits = _EditLog()
        self._original = ""
        self._working = ""

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def collection_id(self) -> str | None:
        return self._collection_id

    @property
    def describe_only(self) -> bool:
        return self._assets is None

    # -- Run -----------------------------------------------------------------

    def run(self, markdown: str) -> PipelineResult:
        """Process *markdown* through all phases and return the result.

        Raises:
            AuthError, CollectionError: Collection resolution failed (the
                pipeline state becomes ``ABORTED``); no text was modified.
        """
        if self._state is not PipelineState.INIT:
            raise RuntimeError("A pipeline instance processes a single document")

        self._original = markdown
        self._working = markdown
        self._resolve_collection()

        phases: list[PhaseStats] = []
        try:
            for kind, state in PHASES:
                self._state = state
                phases.append(self._run_phase(kind))
        finally:
            if self._owns_loader:
                self._loader.close()
        self._state = PipelineState.DONE

        result = PipelineResult(
            markdown=self._working,
            state=self._state,
            collection_id=self._collection_id,
            phases=phases,
        )
        _log.info(
            "Images: %d replaced, %d described, %d failed",
            result.replaced, result.described, result.failed,
        )
        return result

    def _resolve_collection(self) -> None:
        if self._assets is None:
            _log.debug("Describe-only mode: no collection needed")
            return
        try:
            self._collection_id = self._assets.ensure_collection(self._collection_name)
        except Exception:
            self._state = PipelineState.ABORTED
            raise
        self._state = PipelineState.COLLECTION_RESOLVED
        _log.info("Using collection %r (%s)", self._collection_name, self._collection_id)

    # -- Phases ----------------------------------------------------------------

    def _run_phase(self, kind: ImageKind) -> PhaseStats:
        stats = PhaseStats(kind=kind)
        start_time = time.time()
        text = self._working
        refs = scan(text, kind)
        stats.found = len(refs)
        if refs:
            _log.info("Processing %d %s image(s)", len(refs), kind.value)

        # Context always comes from the original document; map the spans
        # before this phase records any edits of its own.
        original_spans = [
            (self._edits.to_original(ref.start), self._edits.to_original(ref.end))
            for ref in refs
        ]

        shift = 0
        for ref, original_span in zip(refs, original_spans):
            try:
                replacement = self._process_reference(ref, original_span, stats)
            except Exception as e:
                stats.failed += 1
                _log.warning(
                    "  Skipping %s image %s: %s",
                    kind.value, _short_locator(ref), e,
                )
                continue
            if replacement is None or replacement == ref.span_text:
                continue

            start = ref.start + shift
            end = ref.end + shift
            text = text[:start] + replacement + text[end:]
            self._edits.record(start, len(ref.span_text), len(replacement))
            shift += len(replacement) - len(ref.span_text)
            stats.replaced += 1

        self._working = text
        stats.elapsed_seconds = time.time() - start_time
        return stats

    def _process_reference(
        self,
        ref: ImageReference,
        original_span: tuple[int, int],
        stats: PhaseStats,
    ) -> str | None:
        """Handle one reference; return its replacement text or ``None`` to keep it."""
        if ref.locator in self._hosted_urls:
            stats.skipped += 1
            _log.debug("  Already hosted in this run: %s", ref.locator)
            return None

        needs_description = (
            self._describer is not None and is_generic_alt_text(ref.alt_text)
        )
        if self.describe_only and not needs_description:
            stats.skipped += 1
            return None

        entry = self._load(ref)

        alt_text = ref.alt_text
        if needs_description:
            assert self._describer is not None
            _log.info("  Generating description for %s image %s", ref.kind.value, _short_locator(ref))
            context = extract_context(self._original, *original_span)
            alt_text = self._describer.describe(
                entry.payload.data, context, entry.payload.content_type,
            )
            _log.info('  Generated description: "%s"', alt_text)

        if self._assets is None:
            if needs_description:
                stats.described += 1
            return f"![{alt_text}]({ref.locator})"

        if entry.upload is None:
            _log.info("  Uploading %s image %s", ref.kind.value, _short_locator(ref))
            try:
                entry.upload = self._assets.upload_payload(entry.payload, self._collection_id)
            except Exception:
                entry.failed = True
                raise
        else:
            stats.reused += 1
            _log.debug("  Reusing upload for %s", _short_locator(ref))

        hosted_url = entry.upload.hosted_url
        self._hosted_urls.add(hosted_url)
        if needs_description:
            stats.described += 1
        _log.info("  Replaced with: %s", hosted_url)
        return f"![{alt_text}]({hosted_url})"

    # -- Sources ---------------------------------------------------------------

    def _source_key(self, ref: ImageReference) -> str:
        if ref.kind is ImageKind.LOCAL:
            return str(resolve_local_path(ref.locator, self._base_dir))
        return ref.locator

    def _load(self, ref: ImageReference) -> _SourceEntry:
        """Return the memo entry for *ref*'s source, loading bytes on first use.

        Raises:
            ImageSourceError: The source failed now or earlier in this run.
        """
        key = self._source_key(ref)
        entry = self._sources.get(key)
        if entry is not None:
            if entry.failed:
                raise ImageSourceError("source failed earlier in this run")
            return entry

        entry = _SourceEntry()
        self._sources[key] = entry
        try:
            entry.payload = self._fetch_payload(ref)
        except Exception:
            entry.failed = True
            raise
        return entry

    def _fetch_payload(self, ref: ImageReference) -> ImagePayload:
        if ref.kind is ImageKind.LOCAL:
            return self._loader.load_local(ref.locator, self._base_dir)
        if ref.kind is ImageKind.REMOTE:
            return self._loader.fetch_remote(ref.locator)
        return self._loader.decode_data_uri(ref.locator)


def _short_locator(ref: ImageReference) -> str:
    """Locator trimmed for log lines (data URIs can be megabytes long)."""
    if ref.kind is ImageKind.BASE64:
        head = ref.locator.split(",", 1)[0]
        return f"{head},...({len(ref.locator)} chars)"
    return ref.locator


def process_markdown(
    markdown: str,
    assets: AssetClient | None,
    collection_name: str = DEFAULT_COLLECTION,
    base_dir: Path | None = None,
    describer: ImageDescriber | None = None,
) -> str:
    """Run a fresh :class:`MarkdownAssetPipeline` and return the rewritten text."""
    pipeline = MarkdownAssetPipeline(
        assets, collection_name, base_dir=base_dir, describer=describer,
    )
    return pipeline.run(markdown).markdown
