"""Configuration management."""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .models import DEFAULT_BASE_URL, normalize_base_url

DEFAULT_USER_AGENT = "ntfy-sync/0.1"


@dataclass
class ServerConfig:
    """ntfy server configuration."""
    base_url: str = DEFAULT_BASE_URL
    token: Optional[str] = None      # access token, sent as Bearer
    username: Optional[str] = None   # basic auth, used if no token
    password: Optional[str] = None
    timeout: float = 15.0            # seconds per request
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class SyncConfig:
    """Background sync configuration."""
    max_workers: int = 4  # size of the worker pool running polls and publishes


@dataclass
class SchedulerConfig:
    """Background poll cadence."""
    min_gap_seconds: int = 60
    max_gap_seconds: int = 300


@dataclass
class AppConfig:
    """Complete application configuration."""
    db_path: str = "ntfy_state.db"
    server: ServerConfig = field(default_factory=ServerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _parse_int_env(key: str, default: int, invalid: list) -> int:
    value = os.getenv(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        invalid.append(f"{key}={value!r}")
        return default


def load_config() -> AppConfig:
    """
    Load configuration from environment variables (and a .env file, if present).

    Raises:
        ValueError: If configuration values are malformed.
    """
    load_dotenv()
    invalid = []

    # Database
    db_path = os.getenv("DB_PATH", "ntfy_state.db")

    # Server
    timeout_str = os.getenv("NTFY_TIMEOUT", "15")
    try:
        timeout = float(timeout_str)
    except ValueError:
        invalid.append(f"NTFY_TIMEOUT={timeout_str!r}")
        timeout = 15.0

    server = ServerConfig(
        base_url=normalize_base_url(os.getenv("NTFY_BASE_URL")),
        token=os.getenv("NTFY_TOKEN") or None,
        username=os.getenv("NTFY_USERNAME") or None,
        password=os.getenv("NTFY_PASSWORD") or None,
        timeout=timeout,
        user_agent=os.getenv("NTFY_USER_AGENT", DEFAULT_USER_AGENT),
    )

    # Sync and scheduler
    max_workers = _parse_int_env("SYNC_MAX_WORKERS", 4, invalid)
    min_gap_seconds = _parse_int_env("MIN_GAP_SECONDS", 60, invalid)
    max_gap_seconds = _parse_int_env("MAX_GAP_SECONDS", 300, invalid)

    if max_workers < 1:
        invalid.append(f"SYNC_MAX_WORKERS={max_workers} (must be at least 1)")
    if min_gap_seconds > max_gap_seconds:
        invalid.append(
            f"MIN_GAP_SECONDS={min_gap_seconds} is larger than MAX_GAP_SECONDS={max_gap_seconds}"
        )

    if invalid:
        raise ValueError(
            f"Invalid configuration values: {', '.join(invalid)}"
        )

    return AppConfig(
        db_path=db_path,
        server=server,
        sync=SyncConfig(max_workers=max_workers),
        scheduler=SchedulerConfig(
            min_gap_seconds=min_gap_seconds,
            max_gap_seconds=max_gap_seconds,
        ),
    )
