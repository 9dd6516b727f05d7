"""Local storage of generated images."""
from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from http.client import HTTPException
from pathlib import Path
from typing import Callable, List, Optional
from urllib import error, request

from .core import DEFAULT_MIME_TYPE, DownloadFailedError, GeneratedImage, GenerationResult

logger = logging.getLogger(__name__)

FILENAME_LABEL = "ideogram_v3"
MAX_PROMPT_CHARS = 50
FALLBACK_PROMPT = "image"

_DISALLOWED = re.compile(r"[^a-z0-9\s_]")
_SEPARATORS = re.compile(r"[\s_]+")


@dataclass
class DownloadedAsset:
    """One generated image paired with where (and whether) it was stored."""
    index: int
    image: GeneratedImage
    filename: str
    local_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def downloaded(self) -> bool:
        return self.local_path is not None

    @property
    def content_type(self) -> str:
        return self.image.content_type or DEFAULT_MIME_TYPE

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "url": self.image.url,
            "local_path": str(self.local_path) if self.local_path else None,
            "filename": self.filename,
            "file_name": self.image.file_name or self.filename,
            "content_type": self.content_type,
            "file_size": self.image.file_size,
            "error": self.error,
        }


def sanitize_prompt(prompt: str) -> str:
    """Reduce text to lowercase alphanumerics joined by single underscores."""
    text = _DISALLOWED.sub("", (prompt or "").lower())
    text = _SEPARATORS.sub("_", text).strip("_")
    text = text[:MAX_PROMPT_CHARS].rstrip("_")
    return text or FALLBACK_PROMPT


def infer_extension(mime_type: Optional[str] = DEFAULT_MIME_TYPE) -> str:
    """Get file extension from MIME type."""
    mapping = {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/jpg": ".jpg",
        "image/webp": ".webp",
        "image/gif": ".gif",
    }
    return mapping.get((mime_type or DEFAULT_MIME_TYPE).lower(), ".png")


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S_%f")


def generate_image_filename(
    prompt: str,
    index: int,
    seed: Optional[int] = None,
    *,
    content_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build a collision-resistant local filename for one image."""
    parts = [FILENAME_LABEL, sanitize_prompt(prompt)]
    if seed is not None:
        parts.append(str(abs(seed)))
    parts.append(str(index))
    parts.append(_timestamp(now))
    return "_".join(parts) + infer_extension(content_type)


def download_image(url: str, target_path: Path) -> Path:
    """Stream ``url`` into ``target_path``.

    A partially written file is removed when the transfer fails.

    Raises:
        DownloadFailedError: On a malformed URL, a non-2xx answer, a network error or a write error.
    """
    try:
        req = request.Request(url, method="GET")
        target_path.parent.mkdir(parents=True, exist_ok=True)
        with request.urlopen(req) as resp:
            # data: URIs report no status code
            status = getattr(resp, "status", None) or 200
            if not 200 <= status < 300:
                raise DownloadFailedError(f"Failed to download image: HTTP {status}")
            try:
                with open(target_path, "wb") as out:
                    shutil.copyfileobj(resp, out)
            except (OSError, HTTPException) as exc:
                target_path.unlink(missing_ok=True)
                raise DownloadFailedError(f"Could not save image to {target_path}: {exc}") from exc
    except error.HTTPError as exc:
        raise DownloadFailedError(f"Failed to download image: HTTP {exc.code}") from exc
    except error.URLError as exc:
        raise DownloadFailedError(f"Network error downloading image: {exc.reason}") from exc
    except ValueError as exc:
        raise DownloadFailedError(f"Invalid image URL {url!r}: {exc}") from exc
    except OSError as exc:
        raise DownloadFailedError(f"Could not save image to {target_path}: {exc}") from exc
    return target_path


def materialize_images(
    result: GenerationResult,
    label: str,
    images_dir: Path,
    *,
    downloader: Callable[[str, Path], Path] = download_image,
) -> List[DownloadedAsset]:
    """Download every image of ``result`` in order, one at a time.

    A failed download is recorded on its asset (``local_path`` stays None)
    and does not stop the remaining downloads.
    """
    assets: List[DownloadedAsset] = []
    for position, image in enumerate(result.images, start=1):
        filename = generate_image_filename(label, position, result.seed, content_type=image.content_type)
        asset = DownloadedAsset(index=position, image=image, filename=filename)
        try:
            asset.local_path = downloader(image.url, images_dir / filename)
            logger.info("Downloaded: %s", filename)
        except DownloadFailedError as exc:
            asset.error = str(exc)
            logger.warning("Failed to download image %d: %s", position, exc)
        assets.append(asset)
    return assets
