"""
Error taxonomy shared by services and API routers.

Upstream "overloaded" failures are not represented here: they surface as the
OpenAI SDK's own APIStatusError once the bounded retry gives up.
"""

import math
from typing import Optional


class FunnelError(Exception):
    """Base class for funnel domain errors."""
    pass


class NotFoundError(FunnelError):
    """Raised when a funnel, page or experiment does not exist."""
    pass


class ValidationError(FunnelError):
    """Raised when input references something that does not exist or is malformed.

    Never silently coerced: callers reject the request outright.
    """
    pass


class MalformedOutputError(FunnelError):
    """Raised when generated output cannot be parsed even after repair."""

    def __init__(self, message: str, raw_tail: str = ""):
        super().__init__(message)
        self.raw_tail = raw_tail


class GenerationBusyError(FunnelError):
    """Raised when a generation pass is already active for the funnel."""

    def __init__(self, funnel_id: str):
        super().__init__(f"Generation already in progress for funnel '{funnel_id}'")
        self.funnel_id = funnel_id


class ExperimentConflictError(FunnelError):
    """Raised when a page already has a running experiment, or one is already concluded."""
    pass


class RateLimitedError(FunnelError):
    """Raised by the keyed rate limiter."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Try again in {math.ceil(retry_after)}s.")


class FetchTimeoutError(FunnelError):
    """Raised when an outbound fetch exceeds its time budget."""

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Timed out after {timeout:.0f}s fetching {url}")
        self.url = url
        self.timeout = timeout


class FetchConnectionError(FunnelError):
    """Raised when an outbound fetch fails for any reason other than a timeout."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class GenerationStalledError(FunnelError):
    """Raised by the progress poller when patience is exhausted."""

    def __init__(self, message: str, last_error: Optional[str] = None):
        super().__init__(message)
        self.last_error = last_error
