"""Runtime settings for the Ideogram MCP server."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Environment variable name for the fal.ai API key
API_KEY_ENV = "FAL_KEY"
IMAGES_DIR_ENV = "IDEOGRAM_MCP_IMAGES_DIR"
LOG_LEVEL_ENV = "IDEOGRAM_MCP_LOG_LEVEL"

# Look for .env in the project root (parent directory of this file's parent)
DOTENV_CANDIDATES = [
    Path(__file__).resolve().parents[1] / ".env",
    Path(__file__).resolve().parents[1] / ".env.local",
]

DEFAULT_ENDPOINT_ID = "fal-ai/ideogram/v3"
DEFAULT_QUEUE_URL = "https://queue.fal.run"
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_IMAGES_DIRNAME = "images"


@dataclass(frozen=True)
class Settings:
    """Configuration decided once at startup and held by the backend client."""
    api_key: Optional[str] = None
    images_dir: Path = field(default_factory=lambda: Path.cwd() / DEFAULT_IMAGES_DIRNAME)
    endpoint_id: str = DEFAULT_ENDPOINT_ID
    queue_url: str = DEFAULT_QUEUE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


def _prime_dotenv_env() -> None:
    """Load environment variables from .env files for local development."""
    for env_file in DOTENV_CANDIDATES:
        try:
            if not env_file.exists():
                continue
            for raw_line in env_file.read_text().splitlines():
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                name, val = line.split("=", 1)
                name = name.strip()
                if not name or name in os.environ:
                    continue
                cleaned = val.strip().strip('"').strip("'")
                if cleaned:
                    os.environ[name] = cleaned
        except OSError:
            continue


def load_settings() -> Settings:
    """Build settings from the environment (after priming .env files)."""
    _prime_dotenv_env()
    images_dir = os.getenv(IMAGES_DIR_ENV)
    return Settings(
        api_key=os.getenv(API_KEY_ENV) or None,
        images_dir=Path(images_dir) if images_dir else Path.cwd() / DEFAULT_IMAGES_DIRNAME,
    )
