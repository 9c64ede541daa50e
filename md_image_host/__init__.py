"""Markdown image hosting package.

Finds every image referenced by a Markdown document (local files, remote
URLs, inline base64 data URIs), uploads each one to an asset store
collection, and rewrites the references to the hosted URLs.

Key features:
- Three ordered passes (local, remote, base64) with position-aware
  replacement, so identical tags at different offsets never collide
- Per-image failure isolation: a failed image keeps its original text
- Optional alt-text generation with a vision model (Claude, OpenAI, xAI)
  using the text around the image as context
- Describe-only mode that fills in alt text without uploading

Note: Imports are deferred to avoid requiring ``anthropic``/``openai`` at
import time.  Use explicit imports from submodules (e.g.,
``from md_image_host.pipeline import process_markdown``) or access via this
package.
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("md-image-host")
except PackageNotFoundError:
    __version__ = "0.0.0"  # fallback for uninstalled dev usage


def __getattr__(name: str):
    """Lazy imports to avoid requiring the SDKs at package import time."""
    # Map attribute names to their source modules.
    _lazy_imports = {
        # md_image_host.asset_client
        "AssetClient": "md_image_host.asset_client",
        "AssetStoreError": "md_image_host.asset_client",
        "AuthError": "md_image_host.asset_client",
        "Collection": "md_image_host.asset_client",
        "CollectionError": "md_image_host.asset_client",
        "ImageLoader": "md_image_host.asset_client",
        "ImagePayload": "md_image_host.asset_client",
        "ImageSourceError": "md_image_host.asset_client",
        "UploadError": "md_image_host.asset_client",
        "UploadResult": "md_image_host.asset_client",
        # md_image_host.client
        "create_vision_backend": "md_image_host.client",
        # md_image_host.context
        "ImageContext": "md_image_host.context",
        "extract_context": "md_image_host.context",
        # md_image_host.describer
        "ImageDescriber": "md_image_host.describer",
        "VisionBackend": "md_image_host.describer",
        # md_image_host.models
        "VISION_PROVIDERS": "md_image_host.models",
        "VisionModelConfig": "md_image_host.models",
        # md_image_host.pipeline
        "MarkdownAssetPipeline": "md_image_host.pipeline",
        "PipelineResult": "md_image_host.pipeline",
        "PipelineState": "md_image_host.pipeline",
        "process_markdown": "md_image_host.pipeline",
        # md_image_host.scanner
        "ImageKind": "md_image_host.scanner",
        "ImageReference": "md_image_host.scanner",
        "scan": "md_image_host.scanner",
    }

    if name in _lazy_imports:
        import importlib
        module = importlib.import_module(_lazy_imports[name])
        return getattr(module, name)

    raise AttributeError(f"module 'md_image_host' has no attribute {name!r}")


__all__ = [
    "AssetClient",
    "AssetStoreError",
    "AuthError",
    "Collection",
    "CollectionError",
    "create_vision_backend",
    "extract_context",
    "ImageContext",
    "ImageDescriber",
    "ImageKind",
    "ImageLoader",
    "ImagePayload",
    "ImageReference",
    "ImageSourceError",
    "MarkdownAssetPipeline",
    "PipelineResult",
    "PipelineState",
    "process_markdown",
    "scan",
    "UploadError",
    "UploadResult",
    "VISION_PROVIDERS",
    "VisionBackend",
    "VisionModelConfig",
]
