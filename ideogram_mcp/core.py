"""Core request handling for the Ideogram v3 MCP server.

This module provides:
- The shared generation parameter model and its validation
- Backend payload construction
- A small fal.ai queue client (submit, status, result, blocking subscribe)

HTTP is done with the Python standard library only.
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from urllib import error, parse, request

from .config import API_KEY_ENV, Settings, load_settings

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

IMAGE_SIZE_PRESETS = (
    "square_hd",
    "square",
    "portrait_4_3",
    "portrait_16_9",
    "landscape_4_3",
    "landscape_16_9",
)
RENDERING_SPEEDS = ("TURBO", "BALANCED", "QUALITY")
STYLES = ("AUTO", "GENERAL", "REALISTIC", "DESIGN")
PALETTE_PRESETS = ("EMBER", "FRESH", "JUNGLE", "MAGIC", "MELON", "MOSAIC", "PASTEL", "ULTRAMARINE")

MAX_NUM_IMAGES = 4
DEFAULT_COLOR_WEIGHT = 0.5
STYLE_CODE_PATTERN = re.compile(r"^[0-9A-Fa-f]{8}$")

STATUS_IN_QUEUE = "IN_QUEUE"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
QUEUE_STATUSES = (STATUS_IN_QUEUE, STATUS_IN_PROGRESS, STATUS_COMPLETED)


class IdeogramError(RuntimeError):
    """Base class for errors reported by the Ideogram tools."""


class NotConfiguredError(IdeogramError):
    """The fal.ai credential is missing."""


class ConflictingParametersError(IdeogramError, ValueError):
    """Mutually exclusive generation parameters were combined."""


class GenerationFailedError(IdeogramError):
    """The backend rejected a call or answered with something unusable."""


class DownloadFailedError(IdeogramError):
    """A single generated image could not be stored locally."""


@dataclass
class CustomImageSize:
    width: int
    height: int

    def to_payload(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


ImageSize = Union[str, CustomImageSize]


@dataclass
class PaletteMember:
    r: int
    g: int
    b: int
    color_weight: float = DEFAULT_COLOR_WEIGHT

    def to_payload(self) -> Dict[str, Any]:
        return {
            "rgb": {"r": self.r, "g": self.g, "b": self.b},
            "color_weight": self.color_weight,
        }


@dataclass
class ColorPalette:
    """Either a named preset or an explicit list of weighted colors."""
    name: Optional[str] = None
    members: List[PaletteMember] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        if self.name:
            return {"name": self.name}
        return {"members": [m.to_payload() for m in self.members]}

    @property
    def label(self) -> str:
        return self.name or "Custom"


@dataclass
class GenerationRequest:
    """Parameters shared by every generation tool."""
    prompt: str
    negative_prompt: str = ""
    image_size: ImageSize = "square_hd"
    rendering_speed: str = "BALANCED"
    style: Optional[str] = None
    style_codes: List[str] = field(default_factory=list)
    color_palette: Optional[ColorPalette] = None
    image_urls: List[str] = field(default_factory=list)
    expand_prompt: bool = True
    num_images: int = 1
    seed: Optional[int] = None
    sync_mode: bool = True


@dataclass
class GeneratedImage:
    url: str
    content_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


def _optional_int(value: Any) -> bool:
    return value is None or (isinstance(value, int) and not isinstance(value, bool))


@dataclass
class GenerationResult:
    """Images produced by one backend request."""
    images: List[GeneratedImage]
    seed: Optional[int] = None
    request_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any, request_id: Optional[str] = None) -> "GenerationResult":
        if not isinstance(payload, dict) or not isinstance(payload.get("images"), list):
            raise GenerationFailedError("Unexpected response from backend: no image list found.")
        images = []
        for entry in payload["images"]:
            if not isinstance(entry, dict) or not isinstance(entry.get("url"), str):
                raise GenerationFailedError("Unexpected response from backend: image entry without URL.")
            for key in ("content_type", "file_name"):
                if entry.get(key) is not None and not isinstance(entry[key], str):
                    raise GenerationFailedError(f"Unexpected response from backend: {key} is not a string.")
            if not _optional_int(entry.get("file_size")):
                raise GenerationFailedError("Unexpected response from backend: file_size is not an integer.")
            images.append(GeneratedImage(
                url=entry["url"],
                content_type=entry.get("content_type"),
                file_name=entry.get("file_name"),
                file_size=entry.get("file_size"),
            ))
        if not _optional_int(payload.get("seed")):
            raise GenerationFailedError("Unexpected response from backend: seed is not an integer.")
        return cls(images=images, seed=payload.get("seed"), request_id=request_id)


@dataclass
class QueueSubmission:
    """Handle returned for an asynchronous submission."""
    request_id: str
    status_url: Optional[str] = None
    response_url: Optional[str] = None


@dataclass
class LogEntry:
    message: str
    timestamp: Optional[str] = None


@dataclass
class QueueStatus:
    request_id: str
    status: str
    queue_position: Optional[int] = None
    response_url: Optional[str] = None
    logs: List[LogEntry] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == STATUS_COMPLETED


def _parse_image_size(value: Any) -> ImageSize:
    if value is None:
        return "square_hd"
    if isinstance(value, CustomImageSize):
        size = value
    elif isinstance(value, str):
        if value not in IMAGE_SIZE_PRESETS:
            raise ValueError(
                f"Unknown image_size '{value}'. Supported: {', '.join(IMAGE_SIZE_PRESETS)}"
            )
        return value
    elif isinstance(value, dict) and "width" in value and "height" in value:
        size = CustomImageSize(width=value["width"], height=value["height"])
    else:
        raise ValueError("image_size must be a preset name or an object with width and height.")

    for dim in (size.width, size.height):
        if isinstance(dim, bool) or not isinstance(dim, int) or dim <= 0:
            raise ValueError("Custom image_size width and height must be positive integers.")
    return size


def _parse_channel(rgb: Dict[str, Any], channel: str) -> int:
    value = rgb.get(channel)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 255:
        raise ValueError(f"Color palette channel '{channel}' must be an integer between 0 and 255.")
    return value


def _parse_color_palette(value: Any) -> Optional[ColorPalette]:
    if value is None or isinstance(value, ColorPalette):
        return value
    if not isinstance(value, dict):
        raise ValueError("color_palette must be an object with either 'name' or 'members'.")

    name = value.get("name")
    raw_members = value.get("members") or []
    if name and raw_members:
        raise ValueError("color_palette must use either a preset name or members, not both.")
    if name:
        if name not in PALETTE_PRESETS:
            raise ValueError(
                f"Unknown color palette '{name}'. Supported: {', '.join(PALETTE_PRESETS)}"
            )
        return ColorPalette(name=name)
    if not raw_members:
        raise ValueError("color_palette requires a preset name or a non-empty members list.")

    members = []
    for raw in raw_members:
        rgb = raw.get("rgb") if isinstance(raw, dict) else None
        if not isinstance(rgb, dict):
            raise ValueError("Each color palette member needs an 'rgb' object.")
        weight = raw.get("color_weight", DEFAULT_COLOR_WEIGHT)
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ValueError("color_weight must be a number.")
        members.append(PaletteMember(
            r=_parse_channel(rgb, "r"),
            g=_parse_channel(rgb, "g"),
            b=_parse_channel(rgb, "b"),
            color_weight=float(weight),
        ))
    return ColorPalette(members=members)


def build_request(
    prompt: str,
    *,
    negative_prompt: Optional[str] = None,
    image_size: Any = None,
    rendering_speed: Optional[str] = None,
    style: Optional[str] = None,
    style_codes: Optional[Sequence[str]] = None,
    color_palette: Any = None,
    image_urls: Optional[Sequence[str]] = None,
    expand_prompt: Optional[bool] = None,
    num_images: Optional[int] = None,
    seed: Optional[int] = None,
    sync_mode: Optional[bool] = None,
) -> GenerationRequest:
    """Normalize raw tool arguments into a GenerationRequest.

    Missing values fall back to the backend defaults. Type and range checks
    raise ValueError; the style/style_codes rule is left to validate_request.
    """
    if not prompt or not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("Prompt is required and must be a non-empty string.")

    speed = rendering_speed or "BALANCED"
    if speed not in RENDERING_SPEEDS:
        raise ValueError(f"Unknown rendering_speed '{speed}'. Supported: {', '.join(RENDERING_SPEEDS)}")

    if style is not None and style not in STYLES:
        raise ValueError(f"Unknown style '{style}'. Supported: {', '.join(STYLES)}")

    codes = list(style_codes or [])
    for code in codes:
        if not isinstance(code, str) or not STYLE_CODE_PATTERN.match(code):
            raise ValueError(f"Invalid style code '{code}': expected 8 hexadecimal characters.")

    urls = list(image_urls or [])
    if any(not isinstance(url, str) or not url for url in urls):
        raise ValueError("image_urls must be a list of non-empty URL strings.")

    count = 1 if num_images is None else num_images
    if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= MAX_NUM_IMAGES:
        raise ValueError(f"num_images must be an integer between 1 and {MAX_NUM_IMAGES}.")

    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
        raise ValueError("seed must be an integer.")

    return GenerationRequest(
        prompt=prompt,
        negative_prompt=negative_prompt or "",
        image_size=_parse_image_size(image_size),
        rendering_speed=speed,
        style=style or None,
        style_codes=codes,
        color_palette=_parse_color_palette(color_palette),
        image_urls=urls,
        expand_prompt=True if expand_prompt is None else bool(expand_prompt),
        num_images=count,
        seed=seed,
        sync_mode=True if sync_mode is None else bool(sync_mode),
    )


def validate_request(req: GenerationRequest) -> GenerationRequest:
    """Reject requests that combine a style preset with style codes."""
    if req.style and req.style_codes:
        raise ConflictingParametersError(
            "Cannot use both 'style' and 'style_codes' parameters together. Please use only one."
        )
    return req


def build_payload(req: GenerationRequest) -> Dict[str, Any]:
    """Build the backend input, leaving out optional fields that were not given."""
    image_size = req.image_size
    payload: Dict[str, Any] = {
        "prompt": req.prompt,
        "image_size": image_size.to_payload() if isinstance(image_size, CustomImageSize) else image_size,
        "rendering_speed": req.rendering_speed,
        "expand_prompt": req.expand_prompt,
        "num_images": req.num_images,
        "sync_mode": req.sync_mode,
    }
    if req.negative_prompt:
        payload["negative_prompt"] = req.negative_prompt
    if req.style:
        payload["style"] = req.style
    if req.style_codes:
        payload["style_codes"] = list(req.style_codes)
    if req.color_palette:
        payload["color_palette"] = req.color_palette.to_payload()
    if req.image_urls:
        payload["image_urls"] = list(req.image_urls)
    if req.seed is not None:
        payload["seed"] = req.seed
    return payload


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Key {api_key}",
    }


def _read_json(resp) -> Any:
    content = resp.read()
    try:
        return json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise GenerationFailedError(f"Backend returned invalid JSON: {exc}") from exc


def _http_get_json(url: str, api_key: str) -> Any:
    """Make an HTTP GET request and return the decoded JSON response."""
    req = request.Request(url, headers=_headers(api_key), method="GET")
    try:
        with request.urlopen(req) as resp:
            return _read_json(resp)
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        raise GenerationFailedError(f"API error {exc.code}: {detail[:400]}") from exc
    except error.URLError as exc:
        raise GenerationFailedError(f"Network error: {exc}") from exc


def _http_post_json(url: str, payload: Dict[str, Any], api_key: str) -> Any:
    """Make an HTTP POST request and return the decoded JSON response."""
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=data, headers=_headers(api_key), method="POST")
    try:
        with request.urlopen(req) as resp:
            return _read_json(resp)
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore") if hasattr(exc, "read") else ""
        raise GenerationFailedError(f"API error {exc.code}: {detail[:400]}") from exc
    except error.URLError as exc:
        raise GenerationFailedError(f"Network error: {exc}") from exc


def _parse_status(request_id: str, payload: Any) -> QueueStatus:
    if not isinstance(payload, dict) or payload.get("status") not in QUEUE_STATUSES:
        raise GenerationFailedError(f"Unexpected queue status response: {str(payload)[:200]}")
    logs = [
        LogEntry(message=str(entry.get("message", "")), timestamp=entry.get("timestamp"))
        for entry in payload.get("logs") or []
        if isinstance(entry, dict)
    ]
    return QueueStatus(
        request_id=request_id,
        status=payload["status"],
        queue_position=payload.get("queue_position"),
        response_url=payload.get("response_url"),
        logs=logs,
    )


LogSink = Callable[[LogEntry], None]


def _log_progress(entry: LogEntry) -> None:
    logger.info("%s", entry.message)


class FalQueueClient:
    """Talks to the fal.ai queue API for a single model endpoint."""

    def __init__(self, settings: Settings, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self.settings = settings
        self._sleep = sleep

    @classmethod
    def from_env(cls) -> "FalQueueClient":
        return cls(load_settings())

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def require_api_key(self) -> str:
        if not self.settings.api_key:
            raise NotConfiguredError(
                f"{API_KEY_ENV} environment variable is not set. Please configure your fal.ai API key."
            )
        return self.settings.api_key

    @property
    def submit_url(self) -> str:
        return f"{self.settings.queue_url.rstrip('/')}/{self.settings.endpoint_id}"

    def request_url(self, request_id: str) -> str:
        # Status and result live under owner/alias; any sub-path only applies to submission.
        app_id = "/".join(self.settings.endpoint_id.split("/")[:2])
        quoted = parse.quote(request_id, safe="")
        return f"{self.settings.queue_url.rstrip('/')}/{app_id}/requests/{quoted}"

    def submit(self, req: GenerationRequest, *, webhook_url: Optional[str] = None) -> QueueSubmission:
        """Enqueue a generation request and return its queue handle."""
        key = self.require_api_key()
        url = self.submit_url
        if webhook_url:
            url += "?" + parse.urlencode({"fal_webhook": webhook_url})

        response = _http_post_json(url, build_payload(req), key)
        if not isinstance(response, dict) or not response.get("request_id"):
            raise GenerationFailedError("Backend did not return a request id for the submission.")
        logger.info("Queued request %s for %s", response["request_id"], self.settings.endpoint_id)
        return QueueSubmission(
            request_id=response["request_id"],
            status_url=response.get("status_url"),
            response_url=response.get("response_url"),
        )

    def status(self, request_id: str, *, with_logs: bool = True) -> QueueStatus:
        key = self.require_api_key()
        url = f"{self.request_url(request_id)}/status?logs={1 if with_logs else 0}"
        return _parse_status(request_id, _http_get_json(url, key))

    def result(self, request_id: str) -> GenerationResult:
        """Fetch the final output of a completed request."""
        key = self.require_api_key()
        payload = _http_get_json(self.request_url(request_id), key)
        return GenerationResult.from_payload(payload, request_id=request_id)

    def subscribe(self, req: GenerationRequest, *, on_log: Optional[LogSink] = None) -> GenerationResult:
        """Submit a request and block until its result is available.

        Log lines reported while the request is in progress are passed to
        ``on_log`` once each, in arrival order.
        """
        sink = on_log or _log_progress
        submission = self.submit(req)
        seen = 0
        while True:
            state = self.status(submission.request_id, with_logs=True)
            if state.status == STATUS_IN_PROGRESS:
                for entry in state.logs[seen:]:
                    sink(entry)
                seen = max(seen, len(state.logs))
            if state.completed:
                break
            self._sleep(self.settings.poll_interval)
        return self.result(submission.request_id)
