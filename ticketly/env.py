from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .constants import DEFAULT_API_BASE_URL, DEFAULT_TIMEOUT_SECONDS, LOGGER


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def get_api_base_url() -> str:
    return os.getenv("TICKETLY_API_BASE_URL", "").strip() or DEFAULT_API_BASE_URL


def get_api_timeout() -> float:
    return _get_env_float("TICKETLY_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    base_url = get_api_base_url()
    parsed = urlparse(base_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(
            "TICKETLY_API_BASE_URL must be an http(s) URL (for example: "
            "https://api.ticketly.example/api)."
        )

    if get_api_timeout() <= 0:
        raise RuntimeError("TICKETLY_API_TIMEOUT must be greater than zero.")

    if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1", "10.0.2.2"}:
        LOGGER.warning("TICKETLY_API_BASE_URL uses plain http for a non-local host: %s", base_url)


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("TICKETLY_API_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
