"""Ideogram MCP Server - fal.ai Ideogram v3 Image Generation.

This package provides an MCP server for generating images with the
fal-ai/ideogram/v3 model and storing them locally.
"""

from .assets import (
    DownloadedAsset,
    download_image,
    generate_image_filename,
    infer_extension,
    materialize_images,
    sanitize_prompt,
)
from .config import API_KEY_ENV, Settings, load_settings
from .core import (
    ColorPalette,
    ConflictingParametersError,
    CustomImageSize,
    DownloadFailedError,
    FalQueueClient,
    GeneratedImage,
    GenerationFailedError,
    GenerationRequest,
    GenerationResult,
    IdeogramError,
    LogEntry,
    NotConfiguredError,
    PaletteMember,
    QueueStatus,
    QueueSubmission,
    build_payload,
    build_request,
    validate_request,
)
from .server import mcp

__all__ = [
    "API_KEY_ENV",
    "ColorPalette",
    "ConflictingParametersError",
    "CustomImageSize",
    "DownloadFailedError",
    "DownloadedAsset",
    "FalQueueClient",
    "GeneratedImage",
    "GenerationFailedError",
    "GenerationRequest",
    "GenerationResult",
    "IdeogramError",
    "LogEntry",
    "NotConfiguredError",
    "PaletteMember",
    "QueueStatus",
    "QueueSubmission",
    "Settings",
    "build_payload",
    "build_request",
    "download_image",
    "generate_image_filename",
    "infer_extension",
    "load_settings",
    "materialize_images",
    "mcp",
    "sanitize_prompt",
    "validate_request",
]

__version__ = "1.0.0"
