"""Centralized timeout policy and helpers."""

from __future__ import annotations

import math
from typing import Any

import httpx


DEFAULT_PROFILE_TIMEOUT_SEC = 300

# Shared provider HTTP timeout buckets.
AI_HTTP_CONNECT_TIMEOUT_SEC = 10.0
AI_HTTP_WRITE_TIMEOUT_SEC = 15.0
AI_HTTP_POOL_TIMEOUT_SEC = 5.0

# Retry/backoff timing defaults.
STANDARD_RETRY_ATTEMPTS = 4
RETRY_BACKOFF_INITIAL_SEC = 1.0
RETRY_BACKOFF_MAX_SEC = 30.0


def normalize_timeout(value: Any) -> int | float:
    """Normalize timeout to int/float and reject invalid values."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("Timeout must be a non-negative finite number")
    numeric = float(value)
    if not math.isfinite(numeric) or numeric < 0:
        raise ValueError("Timeout must be a non-negative finite number")
    if numeric.is_integer():
        return int(numeric)
    return numeric


def build_ai_httpx_timeout(read_timeout_sec: int | float) -> httpx.Timeout | None:
    """Build httpx timeout config for provider clients (``None`` = no timeout)."""
    timeout_sec = normalize_timeout(read_timeout_sec)
    if timeout_sec <= 0:
        return None
    return httpx.Timeout(
        connect=AI_HTTP_CONNECT_TIMEOUT_SEC,
        read=timeout_sec,
        write=AI_HTTP_WRITE_TIMEOUT_SEC,
        pool=AI_HTTP_POOL_TIMEOUT_SEC,
    )
