"""
Runtime configuration.

Values come from the process environment, optionally seeded from a `.env` file
next to this module (python-dotenv). Nothing here talks to the network.

Environment variables:
- SUPABASE_URL: Supabase project URL (required to build a live client)
- SUPABASE_KEY: Supabase API key (required to build a live client)
- STALE_SALE_MAX_AGE_HOURS: age after which a pending sale is cancelled (default 1)
- GRACE_PERIOD_MINUTES: background scans skip pieces changed this recently (default 5)
- RETRY_MAX_ATTEMPTS: attempts for transient store failures (default 3)
- RETRY_BASE_DELAY_SECONDS: first backoff delay, doubled per attempt (default 1.0)
- SWEEP_INTERVAL_SECONDS: pause between periodic maintenance sweeps (default 30)
- LOG_LEVEL: logging level for scripts (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

_DEFAULT_ENV_PATH = Path(__file__).parent / ".env"


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    stale_sale_max_age_hours: float = 1.0
    grace_period_minutes: float = 5.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    sweep_interval_seconds: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.stale_sale_max_age_hours <= 0:
            raise ValueError("STALE_SALE_MAX_AGE_HOURS must be positive")
        if self.grace_period_minutes < 0:
            raise ValueError("GRACE_PERIOD_MINUTES must not be negative")
        if self.retry_max_attempts < 1:
            raise ValueError("RETRY_MAX_ATTEMPTS must be at least 1")
        if self.retry_base_delay_seconds < 0:
            raise ValueError("RETRY_BASE_DELAY_SECONDS must not be negative")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("SWEEP_INTERVAL_SECONDS must be positive")

    @property
    def stale_sale_max_age(self) -> timedelta:
        return timedelta(hours=self.stale_sale_max_age_hours)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(minutes=self.grace_period_minutes)

    def require_supabase_credentials(self) -> tuple[str, str]:
        """Return (url, key) or fail with a message naming the missing variable."""

        if not self.supabase_url:
            raise RuntimeError(
                "Missing environment variable: SUPABASE_URL. "
                "Set SUPABASE_URL to your Supabase project URL."
            )
        if not self.supabase_key:
            raise RuntimeError(
                "Missing environment variable: SUPABASE_KEY. "
                "Set SUPABASE_KEY to your Supabase API key."
            )
        return self.supabase_url, self.supabase_key


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def settings_from_mapping(env: Mapping[str, str]) -> Settings:
    """Build Settings from an environment-like mapping."""

    return Settings(
        supabase_url=env.get("SUPABASE_URL") or None,
        supabase_key=env.get("SUPABASE_KEY") or None,
        stale_sale_max_age_hours=_read_float(env, "STALE_SALE_MAX_AGE_HOURS", 1.0),
        grace_period_minutes=_read_float(env, "GRACE_PERIOD_MINUTES", 5.0),
        retry_max_attempts=_read_int(env, "RETRY_MAX_ATTEMPTS", 3),
        retry_base_delay_seconds=_read_float(env, "RETRY_BASE_DELAY_SECONDS", 1.0),
        sweep_interval_seconds=_read_float(env, "SWEEP_INTERVAL_SECONDS", 30.0),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """
    Load settings from the environment.

    A `.env` file (default: next to this module) is read first; variables that
    are already set in the process environment take precedence.
    """

    load_dotenv(dotenv_path=env_path or _DEFAULT_ENV_PATH)
    return settings_from_mapping(os.environ)


__all__ = ["Settings", "load_settings", "settings_from_mapping"]
