"""Synchronization defaults for the reconciliation service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .env import env_float, env_int

DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_EXPIRY_CHECK_SECONDS = 15.0
DEFAULT_CONFIRMATION_WINDOW_HOURS = 12.0
DEFAULT_DISPATCH_WORKERS = 4
DEFAULT_DISPATCH_MAX_ATTEMPTS = 5
DEFAULT_DISPATCH_BACKOFF_SECONDS = 2.0


@dataclass(frozen=True, slots=True)
class SyncConfig:
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    expiry_check_seconds: float = DEFAULT_EXPIRY_CHECK_SECONDS
    confirmation_window: timedelta = timedelta(hours=DEFAULT_CONFIRMATION_WINDOW_HOURS)
    dispatch_workers: int = DEFAULT_DISPATCH_WORKERS
    dispatch_max_attempts: int = DEFAULT_DISPATCH_MAX_ATTEMPTS
    dispatch_backoff_seconds: float = DEFAULT_DISPATCH_BACKOFF_SECONDS


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        poll_interval_seconds=env_float(
            "SKINSYNC_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
        ),
        expiry_check_seconds=env_float("SKINSYNC_EXPIRY_CHECK", DEFAULT_EXPIRY_CHECK_SECONDS),
        confirmation_window=timedelta(
            hours=env_float("SKINSYNC_CONFIRMATION_HOURS", DEFAULT_CONFIRMATION_WINDOW_HOURS)
        ),
        dispatch_workers=env_int("SKINSYNC_DISPATCH_WORKERS", DEFAULT_DISPATCH_WORKERS),
        dispatch_max_attempts=env_int(
            "SKINSYNC_DISPATCH_ATTEMPTS", DEFAULT_DISPATCH_MAX_ATTEMPTS
        ),
        dispatch_backoff_seconds=env_float(
            "SKINSYNC_DISPATCH_BACKOFF", DEFAULT_DISPATCH_BACKOFF_SECONDS
        ),
    )
