"""
Runtime configuration for docsed.

Values come from the process environment, which the CLI populates from a
``.env`` file via python-dotenv before anything else is imported.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from core.utils import DEFAULT_BASE_DELAY, DEFAULT_MAX_DELAY, DEFAULT_MAX_RETRIES

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default


@dataclass
class SedConfig:
    """
    Tunables for talking to the Docs API.

    Attributes:
        max_retries: Retries after the first attempt for transient failures
        base_delay: First backoff delay in seconds
        max_delay: Cap on the un-jittered backoff delay in seconds
        image_pause: Pause before each image operation in seconds
        image_retry_pause: Pause before the single image retry in seconds
        credentials_file: Service account or authorized-user JSON file
    """
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    image_pause: float = 0.5
    image_retry_pause: float = 2.0
    credentials_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SedConfig":
        """Build a config from DOCSED_* environment variables."""
        return cls(
            max_retries=max(0, _env_int("DOCSED_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
            base_delay=_env_float("DOCSED_BASE_DELAY", DEFAULT_BASE_DELAY),
            max_delay=_env_float("DOCSED_MAX_DELAY", DEFAULT_MAX_DELAY),
            image_pause=_env_float("DOCSED_IMAGE_PAUSE", 0.5),
            image_retry_pause=_env_float("DOCSED_IMAGE_RETRY_PAUSE", 2.0),
            credentials_file=os.getenv("GOOGLE_DOCS_CREDENTIALS") or None,
        )
