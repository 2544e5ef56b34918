"""
Runtime settings for the COT dashboard.

Values come from environment variables, after a local `.env` file (if any)
has been loaded. Every setting has a default so the dashboard runs with no
configuration at all.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://finance-backend-ou68.onrender.com/api/v1"
DEFAULT_SESSION_FILE = Path.home() / ".cotdash" / "session.json"

# Ordering policies for overlapping trend queries
STALE_POLICIES = ("latest_requested", "last_resolved")


@dataclass(frozen=True)
class Settings:
    """Dashboard configuration."""

    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    trend_limit: int = 999
    debounce_ms: int = 200
    price_lookback_years: int = 2
    stale_policy: str = "last_resolved"
    session_file: Path = DEFAULT_SESSION_FILE
    log_level: str = "INFO"

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


def _env_number(env: dict, key: str, default, cast):
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed {key}={raw!r}, using {default}")
        return default


def load_settings(env: dict = None, dotenv_path: Path = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env: Mapping to read instead of os.environ (used by tests)
        dotenv_path: Explicit .env file; defaults to the project root

    Returns:
        Settings with defaults for anything unset
    """
    if env is None:
        load_dotenv(dotenv_path or Path(__file__).parent.parent / ".env")
        env = dict(os.environ)

    stale_policy = env.get("COT_STALE_POLICY", "last_resolved").strip().lower()
    if stale_policy not in STALE_POLICIES:
        logger.warning(f"Unknown COT_STALE_POLICY={stale_policy!r}, using last_resolved")
        stale_policy = "last_resolved"

    session_file = env.get("COT_SESSION_FILE")

    return Settings(
        base_url=env.get("COT_API_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        timeout=_env_number(env, "COT_API_TIMEOUT", 30.0, float),
        trend_limit=_env_number(env, "COT_TREND_LIMIT", 999, int),
        debounce_ms=_env_number(env, "COT_DEBOUNCE_MS", 200, int),
        price_lookback_years=_env_number(env, "COT_PRICE_LOOKBACK_YEARS", 2, int),
        stale_policy=stale_policy,
        session_file=Path(session_file).expanduser() if session_file else DEFAULT_SESSION_FILE,
        log_level=env.get("COT_LOG_LEVEL", "INFO").upper(),
    )
