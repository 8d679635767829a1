import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Values already present in the environment win over the .env file
load_dotenv(override=False)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def get_user_config_dir() -> Path:
    """Per-user config directory where the saved API key lives."""
    override = os.getenv("PHOTO_STUDIO_CONFIG_DIR")
    if override:
        return Path(override)
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "photo-studio"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "photo-studio"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "photo-studio"
    return Path.home() / ".config" / "photo-studio"


@dataclass
class Settings:
    """Runtime settings for provider calls and the HTTP surface."""

    api_base: str = DEFAULT_API_BASE
    image_model: str = "gemini-2.5-flash-image"
    text_model: str = "gemini-3-flash-preview"
    request_timeout: float = 300.0

    # Video jobs
    video_poll_interval: float = 10.0
    video_max_wait: float = 600.0
    video_poll_retries: int = 3
    video_download_timeout: float = 120.0

    uploads_dir: str = "uploads"
    max_file_size: int = 10 * 1024 * 1024

    def __post_init__(self):
        if self.video_poll_interval <= 0:
            raise ValueError("VIDEO_POLL_INTERVAL_S must be > 0")
        if self.video_max_wait <= 0:
            raise ValueError("VIDEO_MAX_WAIT_SECONDS must be > 0")
        if self.video_poll_retries < 1:
            raise ValueError("VIDEO_POLL_RETRIES must be >= 1")
        self.api_base = self.api_base.rstrip("/")


def load_settings() -> Settings:
    """Build settings from environment variables (read on every call)."""
    return Settings(
        api_base=os.getenv("GEMINI_API_BASE", DEFAULT_API_BASE),
        image_model=os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image"),
        text_model=os.getenv("GEMINI_TEXT_MODEL", "gemini-3-flash-preview"),
        request_timeout=float(os.getenv("GEMINI_TIMEOUT_S", "300")),
        video_poll_interval=float(os.getenv("VIDEO_POLL_INTERVAL_S", "10")),
        video_max_wait=float(os.getenv("VIDEO_MAX_WAIT_SECONDS", "600")),
        video_poll_retries=int(os.getenv("VIDEO_POLL_RETRIES", "3")),
        video_download_timeout=float(os.getenv("VIDEO_DOWNLOAD_TIMEOUT_S", "120")),
        uploads_dir=os.getenv("UPLOADS_DIR", "uploads"),
        max_file_size=int(os.getenv("MAX_FILE_SIZE", 10 * 1024 * 1024)),
    )
