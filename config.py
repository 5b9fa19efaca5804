"""Build a FeedConfiguration from the environment."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from feed import default_fields
from models import DelayAttributes, FeedConfiguration

DEFAULT_LEDGER_TIMEOUT_SECONDS = 30.0

LOGGER = logging.getLogger(__name__)


def load_feed_configuration(
    feed_url: str | None = None,
    delay: float | None = None,
) -> FeedConfiguration:
    """Read feed settings from environment variables.

    Args:
        feed_url: Overrides FEED_URL when given.
        delay: Scalar delay broadcast to every phase; overrides all
            FEED_DELAY_* variables when given.
    """
    url = feed_url or _required("FEED_URL")
    private_key = _required("FEED_PRIVATE_KEY")

    return FeedConfiguration(
        url=url,
        private_key=private_key,
        fields=default_fields(author=os.getenv("FEED_AUTHOR") or None),
        profile=load_profile(url),
        delays=DelayAttributes.coerce(delay) if delay is not None else load_delays(),
    )


def load_delays() -> DelayAttributes:
    """Scalar FEED_DELAY_SECONDS, with optional per-phase overrides."""
    base = float(os.getenv("FEED_DELAY_SECONDS", "0"))
    return DelayAttributes(
        before_profile=float(os.getenv("FEED_DELAY_BEFORE_PROFILE", base)),
        before_works=float(os.getenv("FEED_DELAY_BEFORE_WORKS", base)),
        before_licenses=float(os.getenv("FEED_DELAY_BEFORE_LICENSES", base)),
    )


def load_profile(feed_url: str) -> dict[str, str]:
    """Profile attributes from FEED_PROFILE_PATH, else a name-only profile."""
    profile_path = os.getenv("FEED_PROFILE_PATH")
    if profile_path:
        data = json.loads(Path(profile_path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise RuntimeError(f"Profile file {profile_path} must contain a JSON object")
        LOGGER.debug("Loaded profile attributes from %s", profile_path)
        return {str(key): str(value) for key, value in data.items()}

    name = os.getenv("FEED_PROFILE_NAME") or urlparse(feed_url).hostname or feed_url
    return {"name": name}


def ledger_url(override: str | None = None) -> str:
    return (override or _required("LEDGER_URL")).rstrip("/")


def ledger_timeout() -> float:
    return float(os.getenv("LEDGER_TIMEOUT_SECONDS", DEFAULT_LEDGER_TIMEOUT_SECONDS))


def _required(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"{name} environment variable is required")
    return value
