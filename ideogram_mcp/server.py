"""MCP Server for fal.ai Ideogram v3 image generation.

This server exposes the Ideogram v3 model to AI agents via MCP. It provides
tools for generating images synchronously, submitting queued requests,
checking their status, and collecting their results. Generated images are
downloaded into a local images directory.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from fastmcp import FastMCP

from .assets import materialize_images
from .config import LOG_LEVEL_ENV
from .core import (
    FalQueueClient,
    GenerationRequest,
    LogSink,
    NotConfiguredError,
    build_request,
    validate_request,
)
from .formatting import format_generation, format_queue_result, format_status, format_submission

logger = logging.getLogger(__name__)

# Create the MCP server instance (logging configured at run-time)
mcp = FastMCP("Ideogram v3 - fal.ai Image Generator")

# Credential is read once; restarting the server is required to change it.
client = FalQueueClient.from_env()
if not client.configured:
    logger.warning("FAL_KEY environment variable is not set; every tool call will fail until it is.")


def _wrap_tool(fn: Callable[[], dict], failure: str) -> dict:
    """Execute a tool handler and normalize common error handling."""
    try:
        return fn()
    except NotConfiguredError as exc:
        return {"success": False, "error": f"Error: {exc}"}
    except (ValueError, RuntimeError, OSError) as exc:  # noqa: PERF203 safe surface errors
        logger.error("%s %s", failure, exc)
        return {"success": False, "error": f"{failure} Error: {exc}"}


def _prepare(fal: FalQueueClient, params: Dict[str, Any]) -> GenerationRequest:
    fal.require_api_key()
    return validate_request(build_request(**params))


def run_generate(fal: FalQueueClient, params: Dict[str, Any], *, on_log: Optional[LogSink] = None) -> dict:
    """Generate images, wait for them, and store them locally."""
    req = _prepare(fal, params)
    logger.info('Generating image with %s - prompt: "%s"', fal.settings.endpoint_id, req.prompt)
    result = fal.subscribe(req, on_log=on_log)

    logger.info("Downloading images locally...")
    assets = materialize_images(result, req.prompt, fal.settings.images_dir)
    return {
        "success": True,
        "message": format_generation(req, result, assets),
        "request_id": result.request_id,
        "seed": result.seed,
        "images": [asset.to_dict() for asset in assets],
    }


def run_generate_queue(fal: FalQueueClient, params: Dict[str, Any], webhook_url: Optional[str] = None) -> dict:
    req = _prepare(fal, params)
    logger.info('Submitting queue request for %s - prompt: "%s"', fal.settings.endpoint_id, req.prompt)
    submission = fal.submit(req, webhook_url=webhook_url)
    return {
        "success": True,
        "message": format_submission(req, submission, webhook_url),
        "request_id": submission.request_id,
        "status_url": submission.status_url,
        "response_url": submission.response_url,
    }


def _require_request_id(request_id: str) -> str:
    if not request_id or not isinstance(request_id, str) or not request_id.strip():
        raise ValueError("request_id is required and must be a non-empty string.")
    return request_id.strip()


def run_queue_status(fal: FalQueueClient, request_id: str, logs: bool = True) -> dict:
    fal.require_api_key()
    request_id = _require_request_id(request_id)
    logger.info("Checking status for request: %s", request_id)
    state = fal.status(request_id, with_logs=logs)
    return {
        "success": True,
        "message": format_status(state),
        "request_id": request_id,
        "status": state.status,
        "queue_position": state.queue_position,
        "response_url": state.response_url,
        "logs": [{"timestamp": e.timestamp, "message": e.message} for e in state.logs],
    }


def run_queue_result(fal: FalQueueClient, request_id: str) -> dict:
    fal.require_api_key()
    request_id = _require_request_id(request_id)
    logger.info("Getting result for request: %s", request_id)
    result = fal.result(request_id)

    logger.info("Downloading images locally...")
    assets = materialize_images(result, f"queue_result_{request_id}", fal.settings.images_dir)
    return {
        "success": True,
        "message": format_queue_result(request_id, result, assets),
        "request_id": request_id,
        "seed": result.seed,
        "images": [asset.to_dict() for asset in assets],
    }


@mcp.tool()
def generate(
    prompt: str,
    negative_prompt: str = "",
    image_size: Optional[Union[str, Dict[str, int]]] = "square_hd",
    rendering_speed: str = "BALANCED",
    style: Optional[str] = None,
    style_codes: Optional[List[str]] = None,
    color_palette: Optional[Dict[str, Any]] = None,
    image_urls: Optional[List[str]] = None,
    expand_prompt: bool = True,
    num_images: int = 1,
    seed: Optional[int] = None,
    sync_mode: bool = True,
) -> dict:
    """Generate high-quality images with fal-ai/ideogram/v3 and download them locally.

    Ideogram v3 is a text-to-image model with strong text rendering.

    Args:
        prompt: The text prompt to generate an image from.
        negative_prompt: What to exclude from the image. The prompt takes precedence.
        image_size: A preset ("square_hd", "square", "portrait_4_3", "portrait_16_9",
                    "landscape_4_3", "landscape_16_9") or {"width": int, "height": int}.
        rendering_speed: "TURBO", "BALANCED" or "QUALITY".
        style: "AUTO", "GENERAL", "REALISTIC" or "DESIGN". Cannot be used with style_codes.
        style_codes: 8 character hexadecimal style codes. Cannot be used with style.
        color_palette: Either {"name": preset} with one of EMBER, FRESH, JUNGLE, MAGIC, MELON,
                       MOSAIC, PASTEL, ULTRAMARINE, or {"members": [{"rgb": {"r", "g", "b"},
                       "color_weight": float}]}.
        image_urls: Style reference images (JPEG, PNG or WebP, 10MB total at most).
        expand_prompt: Whether MagicPrompt should expand the prompt.
        num_images: Number of images to generate (1-4).
        seed: Seed for the random number generator.
        sync_mode: Wait for the images to be uploaded before the backend responds.

    Returns:
        A dictionary containing:
        - success: Boolean indicating if generation succeeded
        - message: Summary of the request and the generated images
        - request_id: Backend request id
        - seed: Seed reported by the backend (if any)
        - images: Per-image url, local_path (None when the download failed), content_type, file_size
        - error: Error message (if failed)
    """
    params = dict(
        prompt=prompt,
        negative_prompt=negative_prompt,
        image_size=image_size,
        rendering_speed=rendering_speed,
        style=style,
        style_codes=style_codes,
        color_palette=color_palette,
        image_urls=image_urls,
        expand_prompt=expand_prompt,
        num_images=num_images,
        seed=seed,
        sync_mode=sync_mode,
    )
    return _wrap_tool(
        lambda: run_generate(client, params),
        "Failed to generate image with fal-ai/ideogram/v3.",
    )


@mcp.tool()
def generate_queue(
    prompt: str,
    negative_prompt: str = "",
    image_size: Optional[Union[str, Dict[str, int]]] = "square_hd",
    rendering_speed: str = "BALANCED",
    style: Optional[str] = None,
    style_codes: Optional[List[str]] = None,
    color_palette: Optional[Dict[str, Any]] = None,
    image_urls: Optional[List[str]] = None,
    expand_prompt: bool = True,
    num_images: int = 1,
    seed: Optional[int] = None,
    sync_mode: bool = True,
    webhook_url: Optional[str] = None,
) -> dict:
    """Submit a long-running fal-ai/ideogram/v3 generation request to the queue.

    Takes the same parameters as 'generate', plus an optional webhook_url that
    the backend notifies when the result is ready. Returns the request id to use
    with 'queue_status' and 'queue_result'; no images are produced yet.
    """
    params = dict(
        prompt=prompt,
        negative_prompt=negative_prompt,
        image_size=image_size,
        rendering_speed=rendering_speed,
        style=style,
        style_codes=style_codes,
        color_palette=color_palette,
        image_urls=image_urls,
        expand_prompt=expand_prompt,
        num_images=num_images,
        seed=seed,
        sync_mode=sync_mode,
    )
    return _wrap_tool(
        lambda: run_generate_queue(client, params, webhook_url=webhook_url),
        "Failed to submit queue request for fal-ai/ideogram/v3.",
    )


@mcp.tool()
def queue_status(request_id: str, logs: bool = True) -> dict:
    """Check the status of a queued image generation request.

    Args:
        request_id: The request ID from queue submission.
        logs: Include backend logs in the response.
    """
    return _wrap_tool(
        lambda: run_queue_status(client, request_id, logs),
        "Failed to check queue status.",
    )


@mcp.tool()
def queue_result(request_id: str) -> dict:
    """Get the result of a completed queued request and download its images."""
    return _wrap_tool(
        lambda: run_queue_result(client, request_id),
        "Failed to get queue result.",
    )


def main() -> None:
    """Run the MCP server via stdio, logging to stderr."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, os.getenv(LOG_LEVEL_ENV, "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(show_banner=False)


# Entry point for running the server
if __name__ == "__main__":
    main()
