"""
Runtime configuration.

Every knob is read from the environment once at import time. Numeric values
are clamped so a bad deployment setting cannot produce a zero timeout or an
unbounded retry loop.
"""

import os


def _float_env(name: str, default: float, lo: float, hi: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def _int_env(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(lo, min(hi, value))


# Generation service
GENERATION_MODEL = os.getenv("FUNNEL_GENERATION_MODEL", "gpt-4o")
FAST_MODEL = os.getenv("FUNNEL_FAST_MODEL", "gpt-4o-mini")
GENERATION_TIMEOUT = _float_env("FUNNEL_GENERATION_TIMEOUT", 30.0, 5.0, 120.0)
PAGE_MAX_TOKENS = _int_env("FUNNEL_PAGE_MAX_TOKENS", 8000, 1000, 16000)
REPAIR_MAX_TOKENS = _int_env("FUNNEL_REPAIR_MAX_TOKENS", 4000, 1000, 16000)

# Outbound image fetches during intake
IMAGE_FETCH_TIMEOUT = _float_env("FUNNEL_IMAGE_FETCH_TIMEOUT", 15.0, 1.0, 60.0)
OBJECT_STORE_URL = os.getenv("FUNNEL_OBJECT_STORE_URL", "")
OBJECT_STORE_PUBLIC_URL = os.getenv("FUNNEL_OBJECT_STORE_PUBLIC_URL", "")

# Public base URL that bundled pages post telemetry to. Empty means derive
# it from the incoming request.
API_BASE = os.getenv("FUNNEL_API_BASE", "")

# Per-caller rate limits for expensive mutations (seconds between calls)
CONCLUDE_RATE_LIMIT_SECONDS = _float_env("FUNNEL_CONCLUDE_RATE_LIMIT_SECONDS", 15.0, 0.0, 3600.0)
BRIEF_RATE_LIMIT_SECONDS = _float_env("FUNNEL_BRIEF_RATE_LIMIT_SECONDS", 15.0, 0.0, 3600.0)
IMPROVE_RATE_LIMIT_SECONDS = _float_env("FUNNEL_IMPROVE_RATE_LIMIT_SECONDS", 60.0, 0.0, 3600.0)

# Progress polling patience for external callers
POLL_INTERVAL_SECONDS = _float_env("FUNNEL_POLL_INTERVAL_SECONDS", 3.0, 0.1, 60.0)
POLL_STALL_SECONDS = _float_env("FUNNEL_POLL_STALL_SECONDS", 90.0, 5.0, 900.0)
POLL_MAX_RETRIGGERS = _int_env("FUNNEL_POLL_MAX_RETRIGGERS", 3, 0, 10)
