"""CLI entry point for md-image-host.

Upload the images referenced by Markdown documents to an asset store and
rewrite the references to hosted URLs.

Usage::

    md-image-host upload README.md
    md-image-host upload docs/*.md -j -c docs-images
    md-image-host upload post.md -o post.hosted.md --describe --ai-provider claude
    md-image-host describe notes.md
"""

import argparse
import logging
import os
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import colorlog

from md_image_host import __version__
from md_image_host.asset_client import DEFAULT_TIMEOUT_S, AssetClient, ImageLoader
from md_image_host.client import create_vision_backend
from md_image_host.describer import ImageDescriber
from md_image_host.models import DEFAULT_PROVIDER, VISION_PROVIDERS
from md_image_host.pipeline import DEFAULT_COLLECTION, MarkdownAssetPipeline


_log = logging.getLogger("md-image-host")

DEFAULT_API_URL = "http://localhost:3000"
"""Asset store URL when neither ``--url`` nor ``API_URL`` is set."""


# ---------------------------------------------------------------------------
# Thread-local logging context (for parallel document processing)
# ---------------------------------------------------------------------------

_thread_context = threading.local()
"""Per-thread storage for the current document name."""

_doc_prefix_width: int = 0
"""Minimum width for the ``[doc_name]`` prefix (set before spawning workers)."""


class _DocumentContextFilter(logging.Filter):
    """Inject per-thread document name into every log record.

    Records emitted from a worker that called :func:`set_document_context`
    carry a ``doc_prefix`` field such as ``"[README]  "``; otherwise the
    prefix is empty.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        doc = getattr(_thread_context, "doc_name", "")
        if doc:
            tag = f"[{doc}]"
            record.doc_prefix = tag.ljust(_doc_prefix_width) + " "  # type: ignore[attr-defined]
        else:
            record.doc_prefix = ""  # type: ignore[attr-defined]
        return True


def set_document_context(doc_name: str) -> None:
    """Set the document name for the current thread's log lines."""
    _thread_context.doc_name = doc_name


def clear_document_context() -> None:
    """Clear the document name for the current thread."""
    _thread_context.doc_name = ""


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_colorized_logging():
    """Configure colorized logging output."""
    handler = colorlog.StreamHandler()
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(levelname)-8s%(reset)s %(blue)s%(name)-9s%(reset)s: "
            "%(doc_prefix)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler.addFilter(_DocumentContextFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Suppress noisy libraries
    for name in ("httpx", "httpcore", "anthropic", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _setup_logging(verbose: bool) -> None:
    """Initialize colorized logging and optionally enable debug level."""
    setup_colorized_logging()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

_JOBS_AUTO = 0
"""Sentinel for ``-j`` without a number (auto = one worker per document)."""


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser with subcommands."""
    # -- Parent parsers for shared argument groups -----------------------------
    common_parent = argparse.ArgumentParser(add_help=False)
    common_parent.add_argument(
        "files",
        nargs="+",
        type=Path,
        help="Markdown file(s) to process",
    )
    common_parent.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    common_parent.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        metavar="FILE",
        help="Output file (single input only; default: overwrite the input)",
    )
    common_parent.add_argument(
        "-j", "--jobs",
        type=int,
        default=1,
        nargs="?",
        const=_JOBS_AUTO,
        metavar="N",
        help="Number of documents to process in parallel. "
             "'-j' alone = one worker per document; "
             "'-j N' = exactly N workers (default: 1, sequential).",
    )
    common_parent.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_S,
        metavar="SECONDS",
        help="Timeout for each HTTP/API request (default: %(default)s).",
    )

    ai_parent = argparse.ArgumentParser(add_help=False)
    ai_parent.add_argument(
        "--ai-provider",
        choices=list(VISION_PROVIDERS.keys()),
        default=None,
        help=f"Vision provider for image descriptions "
             f"(env AI_PROVIDER, default: {DEFAULT_PROVIDER}).",
    )
    ai_parent.add_argument(
        "--ai-key",
        default=None,
        metavar="KEY",
        help="API key for the vision provider (default: the provider's "
             "environment variable, e.g. OPENAI_API_KEY).",
    )

    # -- Main parser -----------------------------------------------------------
    parser = argparse.ArgumentParser(
        prog="md-image-host",
        description="Upload images referenced by Markdown documents to an "
                    "asset store and rewrite the references",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  upload      Upload local, remote and base64 images and rewrite their URLs
  describe    Generate alt text for images without uploading them

Examples:
  %(prog)s upload README.md                    Upload images, overwrite README.md
  %(prog)s upload post.md -o out.md -d         Also describe images lacking alt text
  %(prog)s upload docs/*.md -j                 Process documents in parallel
  %(prog)s describe notes.md --ai-provider xai Only fill in missing alt text

Run '%(prog)s COMMAND --help' for command-specific options.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # -- upload ----------------------------------------------------------------
    p_upload = subparsers.add_parser(
        "upload",
        parents=[common_parent, ai_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Upload images and rewrite references to hosted URLs",
        description="Upload every local, remote and base64 image referenced "
                    "by the document and replace each reference with the "
                    "hosted URL. Images that fail are left untouched.",
        epilog="""
Environment:
  API_URL, API_KEY, API_EMAIL, API_PASSWORD, COLLECTION_NAME, AI_PROVIDER,
  ANTHROPIC_API_KEY, OPENAI_API_KEY, XAI_API_KEY
        """,
    )
    p_upload.add_argument(
        "-c", "--collection",
        default=None,
        metavar="NAME",
        help=f"Collection name for images (env COLLECTION_NAME, "
             f"default: {DEFAULT_COLLECTION}).",
    )
    p_upload.add_argument(
        "-u", "--url",
        default=None,
        help=f"Asset store URL (env API_URL, default: {DEFAULT_API_URL}).",
    )
    p_upload.add_argument(
        "-k", "--api-key",
        default=None,
        metavar="KEY",
        help="Asset store API key (env API_KEY).",
    )
    p_upload.add_argument(
        "-e", "--email",
        default=None,
        help="Asset store login email (env API_EMAIL).",
    )
    p_upload.add_argument(
        "-p", "--password",
        default=None,
        help="Asset store login password (env API_PASSWORD).",
    )
    p_upload.add_argument(
        "-d", "--describe",
        action="store_true",
        help="Generate descriptions for images with empty or generic alt text.",
    )

    # -- describe --------------------------------------------------------------
    subparsers.add_parser(
        "describe",
        parents=[common_parent, ai_parent],
        formatter_class=argparse.RawDescriptionHelpFormatter,
        help="Generate alt text for images without uploading them",
        description="Fill in empty or generic alt text using a vision "
                    "model. Image locators are left unchanged.",
    )

    return parser


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _env(value: str | None, name: str, default: str | None = None) -> str | None:
    """Return *value* if given, else environment variable *name*, else *default*."""
    if value:
        return value
    return os.environ.get(name) or default


def _resolve_file_paths(raw_paths: list[Path]) -> list[Path] | None:
    """Resolve and validate input paths; ``None`` (after logging) on first error."""
    resolved: list[Path] = []
    for p in raw_paths:
        rp = p.resolve()
        if not rp.exists():
            _log.error("File not found: %s", p)
            return None
        if not rp.is_file():
            _log.error("Not a file: %s", p)
            return None
        resolved.append(rp)
    return resolved


def _create_describer(args: argparse.Namespace) -> ImageDescriber | None:
    """Build the describer selected by ``--ai-provider``; ``None`` on config error."""
    provider = _env(args.ai_provider, "AI_PROVIDER", DEFAULT_PROVIDER)
    model = VISION_PROVIDERS.get(provider)
    if model is None:
        _log.error(
            "AI provider must be one of: %s (got %r)",
            ", ".join(VISION_PROVIDERS), provider,
        )
        return None
    api_key = _env(args.ai_key, model.api_key_env)
    if not api_key:
        _log.error(
            "%s API key is required for image description "
            "(--ai-key or %s)", provider.upper(), model.api_key_env,
        )
        return None
    _log.info("Image descriptions: %s (%s)", model.display_name, model.model_id)
    backend = create_vision_backend(provider, api_key, timeout=args.timeout)
    return ImageDescriber(backend)


def _process_one_document(
    md_path: Path,
    output_path: Path,
    *,
    collection: str,
    describer: ImageDescriber | None,
    store: dict | None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> bool:
    """Run the pipeline for one document and write the result.

    Args:
        md_path: Resolved input Markdown path.
        output_path: Where to write the rewritten document.
        collection: Destination collection name.
        describer: Optional alt-text generator.
        store: ``AssetClient`` keyword arguments, or ``None`` for
            describe-only mode.
        timeout: Image download timeout in describe-only mode.

    Returns:
        ``True`` on success (per-image failures included), ``False`` on a
        fatal error for this document.
    """
    set_document_context(md_path.stem)
    try:
        start = time.time()
        markdown = md_path.read_text(encoding="utf-8")
        if store is None:
            with ImageLoader(timeout=timeout) as loader:
                pipeline = MarkdownAssetPipeline(
                    None, collection, base_dir=md_path.parent,
                    describer=describer, loader=loader,
                )
                result = pipeline.run(markdown)
        else:
            with AssetClient(**store) as assets:
                assets.initialize()
                pipeline = MarkdownAssetPipeline(
                    assets, collection, base_dir=md_path.parent, describer=describer,
                )
                result = pipeline.run(markdown)

        _log.info("Writing output to: %s", output_path)
        output_path.write_text(result.markdown, encoding="utf-8")
        _log.info("Processing complete (%.1fs)", time.time() - start)
        return True
    except Exception as e:
        _log.error("Fatal error: %s", e)
        return False
    finally:
        clear_document_context()


def _run_documents(
    md_paths: list[Path],
    args: argparse.Namespace,
    *,
    collection: str,
    describer: ImageDescriber | None,
    store: dict | None,
) -> int:
    """Process all documents sequentially or in parallel; return the exit code."""
    def outputs(path: Path) -> Path:
        return args.output if args.output is not None else path

    jobs = args.jobs
    if jobs <= _JOBS_AUTO:
        jobs = len(md_paths)
    max_workers = min(jobs, len(md_paths))

    failures = 0
    if max_workers > 1:
        global _doc_prefix_width  # noqa: PLW0603
        _doc_prefix_width = max(len(p.stem) for p in md_paths) + 2  # +2 for []
        _log.info("Parallel: %d workers", max_workers)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(
                    _process_one_document, path, outputs(path),
                    collection=collection, describer=describer, store=store,
                    timeout=args.timeout,
                )
                for path in md_paths
            ]
            for future in as_completed(futures):
                if not future.result():
                    failures += 1
    else:
        for path in md_paths:
            if not _process_one_document(
                path, outputs(path),
                collection=collection, describer=describer, store=store,
                timeout=args.timeout,
            ):
                failures += 1

    if len(md_paths) > 1:
        _log.info(
            "Done: %d document(s), %d failed", len(md_paths), failures,
        )
    return 1 if failures else 0


def _prepare_inputs(args: argparse.Namespace) -> list[Path] | None:
    md_paths = _resolve_file_paths(args.files)
    if md_paths is None:
        return None
    if args.output is not None and len(md_paths) > 1:
        _log.error("--output can only be used with a single input file")
        return None
    return md_paths


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_upload(args: argparse.Namespace) -> int:
    """Handle the ``upload`` subcommand."""
    _setup_logging(args.verbose)

    md_paths = _prepare_inputs(args)
    if md_paths is None:
        return 1

    api_key = _env(args.api_key, "API_KEY")
    email = _env(args.email, "API_EMAIL")
    password = _env(args.password, "API_PASSWORD")
    if not api_key and not (email and password):
        _log.error(
            "Either API key or email/password are required. Set them via "
            "command line options or environment variables."
        )
        return 1

    url = _env(args.url, "API_URL", DEFAULT_API_URL)
    collection = _env(args.collection, "COLLECTION_NAME", DEFAULT_COLLECTION)

    describer = None
    if args.describe:
        describer = _create_describer(args)
        if describer is None:
            return 1

    _log.info("md-image-host %s", __version__)
    _log.info("Asset store: %s", url)
    _log.info("Using collection: %s", collection)

    store = {
        "base_url": url,
        "api_key": api_key,
        "email": email,
        "password": password,
        "timeout": args.timeout,
    }
    return _run_documents(
        md_paths, args, collection=collection, describer=describer, store=store,
    )


def _cmd_describe(args: argparse.Namespace) -> int:
    """Handle the ``describe`` subcommand."""
    _setup_logging(args.verbose)

    md_paths = _prepare_inputs(args)
    if md_paths is None:
        return 1

    describer = _create_describer(args)
    if describer is None:
        return 1

    _log.info("md-image-host %s (describe only)", __version__)
    return _run_documents(
        md_paths, args, collection=DEFAULT_COLLECTION, describer=describer, store=None,
    )


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = _build_parser()
    argv = sys.argv[1:] if argv is None else argv

    # Show help if no arguments provided.
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    handlers = {
        "upload": _cmd_upload,
        "describe": _cmd_describe,
    }
    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
