"""Configuration and environment handling."""

import logging
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

logger = logging.getLogger("marginalia.config")

DEFAULT_API_URL = "http://localhost:3000/api"
DEFAULT_TIMEOUT = 15.0

REQUIRED_PACKAGES = ["requests", "python-dotenv", "pydantic", "Pillow", "tqdm"]


def check_dependencies() -> bool:
    """Check if required packages are installed."""
    try:
        import requests  # noqa: F401
        from dotenv import load_dotenv  # noqa: F401
        import pydantic  # noqa: F401
        from PIL import Image  # noqa: F401
        import tqdm  # noqa: F401

        return True
    except ImportError:
        return False


@lru_cache
def load_env() -> None:
    """Load .env once per process."""
    from dotenv import load_dotenv

    load_dotenv()


def get_api_url() -> str:
    """Get the review backend URL.

    Set MARGINALIA_API_URL environment variable to override.
    """
    load_env()
    return os.environ.get("MARGINALIA_API_URL", DEFAULT_API_URL).rstrip("/")


def get_timeout() -> float:
    load_env()
    raw = os.environ.get("MARGINALIA_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid MARGINALIA_TIMEOUT=%r", raw)
        return DEFAULT_TIMEOUT


def get_state_dir() -> Path:
    """Directory for visitor state (display name, guest ownership record)."""
    load_env()
    raw = os.environ.get("MARGINALIA_STATE_DIR")
    return Path(raw).expanduser() if raw else Path.home() / ".marginalia"


def get_token() -> Optional[str]:
    """Bearer credential for signed-in use, or None for guest mode."""
    load_env()
    return os.environ.get("MARGINALIA_TOKEN") or None


def get_share_credentials() -> tuple[Optional[str], Optional[str]]:
    """Share token and optional password from the environment."""
    load_env()
    return (
        os.environ.get("MARGINALIA_SHARE_TOKEN") or None,
        os.environ.get("MARGINALIA_SHARE_PASSWORD") or None,
    )


def require_token() -> str:
    """Load the bearer credential or exit when it is missing."""
    token = get_token()
    if not token:
        logger.error("MARGINALIA_TOKEN not found in environment or .env file")
        sys.exit(1)
    return token
