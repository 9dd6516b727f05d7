"""Human-readable summaries returned by the MCP tools."""
from __future__ import annotations

from typing import List, Optional

from .assets import DownloadedAsset
from .core import GenerationRequest, GenerationResult, QueueStatus, QueueSubmission

MODEL_LABEL = "fal-ai/ideogram/v3"


def _image_details(assets: List[DownloadedAsset]) -> str:
    blocks = []
    for asset in assets:
        lines = [f"Image {asset.index}:"]
        if asset.local_path:
            lines.append(f"  Local Path: {asset.local_path}")
        else:
            lines.append(f"  Download Failed: {asset.error or 'unknown error'}")
        lines.append(f"  Original URL: {asset.image.url}")
        lines.append(f"  Filename: {asset.filename}")
        lines.append(f"  Content Type: {asset.content_type}")
        if asset.image.file_size:
            lines.append(f"  File Size: {asset.image.file_size} bytes")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _seed_line(seed: Optional[int]) -> str:
    return f"Seed: {seed}" if seed is not None else "Seed: Auto-generated"


def _download_note(assets: List[DownloadedAsset]) -> str:
    failed = sum(1 for a in assets if not a.downloaded)
    if not assets or failed == 0:
        return "Images have been downloaded to the local 'images' directory."
    if failed == len(assets):
        return "Note: Local download failed, but original URLs are available."
    return (
        f"Note: {failed} of {len(assets)} image(s) could not be downloaded; "
        "their original URLs are still available."
    )


def format_request(req: GenerationRequest) -> str:
    """Echo the parameters that were sent to the backend."""
    lines = [f'Prompt: "{req.prompt}"']
    if req.negative_prompt:
        lines.append(f'Negative Prompt: "{req.negative_prompt}"')
    lines.append(f"Image Size: {req.image_size}")
    lines.append(f"Rendering Speed: {req.rendering_speed}")
    if req.style:
        lines.append(f"Style: {req.style}")
    if req.style_codes:
        lines.append(f"Style Codes: {', '.join(req.style_codes)}")
    if req.color_palette:
        lines.append(f"Color Palette: {req.color_palette.label}")
    if req.image_urls:
        lines.append(f"Style Reference Images: {len(req.image_urls)}")
    lines.append(f"Expand Prompt: {str(req.expand_prompt).lower()}")
    lines.append(f"Number of Images: {req.num_images}")
    return "\n".join(lines)


def format_generation(req: GenerationRequest, result: GenerationResult, assets: List[DownloadedAsset]) -> str:
    return (
        f"Successfully generated {len(assets)} image(s) using {MODEL_LABEL}:\n\n"
        f"{format_request(req)}\n"
        f"{_seed_line(result.seed)}\n"
        f"Request ID: {result.request_id or 'unknown'}\n\n"
        f"Generated Images:\n{_image_details(assets)}\n\n"
        f"{_download_note(assets)}"
    )


def format_queue_result(request_id: str, result: GenerationResult, assets: List[DownloadedAsset]) -> str:
    return (
        f"Queue Result for Request ID: {request_id}\n\n"
        f"Successfully completed! Generated {len(assets)} image(s):\n\n"
        f"{_seed_line(result.seed)}\n\n"
        f"Generated Images:\n{_image_details(assets)}\n\n"
        f"{_download_note(assets)}"
    )


def format_submission(req: GenerationRequest, submission: QueueSubmission, webhook_url: Optional[str]) -> str:
    webhook = f"Webhook URL: {webhook_url}" if webhook_url else "No webhook configured"
    return (
        "Successfully submitted image generation request to queue.\n\n"
        f"Request ID: {submission.request_id}\n"
        f'Prompt: "{req.prompt}"\n'
        f"{webhook}\n\n"
        "Use the request ID with queue_status to check progress or queue_result to get the final result."
    )


def format_status(state: QueueStatus) -> str:
    text = f"Queue Status for Request ID: {state.request_id}\n\nStatus: {state.status}"
    if state.queue_position is not None:
        text += f"\nQueue Position: {state.queue_position}"
    if state.response_url:
        text += f"\nResponse URL: {state.response_url}"
    if state.logs:
        lines = "\n".join(f"[{entry.timestamp or '-'}] {entry.message}" for entry in state.logs)
        text += f"\n\nLogs:\n{lines}"
    return text
