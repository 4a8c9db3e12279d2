"""
Generation Poller

Bounded-patience progress polling for callers that trigger generation and
wait for it (CLI, API clients).

Protocol:
1. Trigger generation once.
2. Poll progress every interval.
3. Any increase in pages_ready resets the stall window and retry budget.
4. No progress for stall_seconds: re-trigger, at most max_retriggers times.
5. Budget exhausted: raise GenerationStalledError with the last error seen.
"""

import logging
import time
from typing import Callable, Optional

from ..config import POLL_INTERVAL_SECONDS, POLL_MAX_RETRIGGERS, POLL_STALL_SECONDS
from ..errors import FunnelError, GenerationBusyError, GenerationStalledError
from .brief_orchestrator import GenerationProgress

logger = logging.getLogger(__name__)


class GenerationPoller:
    def __init__(
        self,
        trigger: Callable[[], Optional[GenerationProgress]],
        fetch_progress: Callable[[], GenerationProgress],
        interval: float = POLL_INTERVAL_SECONDS,
        stall_seconds: float = POLL_STALL_SECONDS,
        max_retriggers: int = POLL_MAX_RETRIGGERS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.trigger = trigger
        self.fetch_progress = fetch_progress
        self.interval = interval
        self.stall_seconds = stall_seconds
        self.max_retriggers = max_retriggers
        self._clock = clock
        self._sleep = sleep

    def run(self, on_progress: Optional[Callable[[GenerationProgress], None]] = None) -> GenerationProgress:
        """Trigger, then poll until complete.

        Raises:
            GenerationStalledError: no progress after every allowed re-trigger
        """
        last_error = self._fire()
        progress = self.fetch_progress()
        last_ready = progress.pages_ready
        last_change = self._clock()
        retriggers = 0

        while not progress.complete:
            self._sleep(self.interval)
            progress = self.fetch_progress()
            if progress.last_error:
                last_error = progress.last_error
            if on_progress is not None:
                on_progress(progress)

            if progress.pages_ready > last_ready:
                last_ready = progress.pages_ready
                last_change = self._clock()
                retriggers = 0
                continue
            if progress.complete:
                break

            if self._clock() - last_change > self.stall_seconds:
                if retriggers >= self.max_retriggers:
                    raise GenerationStalledError(
                        f"Generation failed after {self.max_retriggers} retries "
                        f"({progress.pages_ready}/{progress.total_pages} pages ready)",
                        last_error=last_error,
                    )
                retriggers += 1
                last_change = self._clock()
                logger.warning(
                    f"Generation of {progress.funnel_id} stalled at {progress.pages_ready}/"
                    f"{progress.total_pages}, re-triggering ({retriggers}/{self.max_retriggers})"
                )
                last_error = self._fire() or last_error

        return progress

    def _fire(self) -> Optional[str]:
        """Trigger a pass; a rejected trigger is logged, not fatal."""
        try:
            result = self.trigger()
        except GenerationBusyError:
            logger.info("Generation already running, continuing to poll")
            return None
        except FunnelError as e:
            logger.warning(f"Generation trigger rejected: {e}")
            return str(e)
        return result.last_error if result is not None else None
