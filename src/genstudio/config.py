"""
Configuration for the GenStudio chat client.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_API_BASE_URL = "https://python-genai-production.up.railway.app"
DEFAULT_WELCOME_MESSAGE = (
    "Hello! I'm your AI assistant for creating amazing visual assets. "
    "Choose a mode and describe what you'd like me to generate."
)


@dataclass
class Config:
    """Main configuration for the chat client."""

    # Backend settings
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout_seconds: float = 1200.0  # generation can take minutes
    read_timeout_seconds: float = 30.0

    # Retry policy for idempotent reads (history, asset lists, avatars)
    read_retry_attempts: int = 3
    read_retry_min_delay_seconds: float = 1.0
    read_retry_max_delay_seconds: float = 8.0

    # Media staging
    max_upload_bytes: int = 20 * 1024 * 1024
    max_staged_images: int = 2
    max_reference_images: int = 5

    # Video defaults
    default_video_model: str = "veo-3.1-fast-generate-preview"
    default_aspect_ratio: str = "16:9"
    default_resolution: str = "720p"

    welcome_message: str = DEFAULT_WELCOME_MESSAGE

    def __post_init__(self):
        self.api_base_url = (self.api_base_url or DEFAULT_API_BASE_URL).rstrip("/")

    def url(self, path: str) -> str:
        return f"{self.api_base_url}/{path.lstrip('/')}"


def _load_env() -> None:
    repo_env = Path(__file__).resolve().parents[2] / ".env"
    if repo_env.exists():
        load_dotenv(dotenv_path=repo_env)
    else:
        load_dotenv()


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def load_config(api_base_url: Optional[str] = None) -> Config:
    """Build a Config from .env and GENSTUDIO_* environment variables."""
    _load_env()
    defaults = Config()
    return Config(
        api_base_url=(
            api_base_url
            or os.environ.get("GENSTUDIO_API_BASE_URL")
            or defaults.api_base_url
        ),
        request_timeout_seconds=_env_number(
            "GENSTUDIO_REQUEST_TIMEOUT", defaults.request_timeout_seconds, float
        ),
        max_upload_bytes=_env_number(
            "GENSTUDIO_MAX_UPLOAD_BYTES", defaults.max_upload_bytes, int
        ),
    )


# Default configuration instance
default_config = Config()
