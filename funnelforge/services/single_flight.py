"""
Single-flight guard.

At most one holder per key at a time. Acquisition never waits: a second
caller for a busy key gets GenerationBusyError immediately.

State is per process, like the API's other in-memory run tracking; a
multi-worker deployment needs one guard per funnel shard.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Set

from ..errors import GenerationBusyError

logger = logging.getLogger(__name__)


class SingleFlight:
    def __init__(self):
        self._lock = threading.Lock()
        self._active: Set[str] = set()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._active.discard(key)

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the key for the duration of the block.

        Raises:
            GenerationBusyError: the key is already held
        """
        if not self.try_acquire(key):
            logger.info(f"Rejected concurrent generation for funnel {key}")
            raise GenerationBusyError(key)
        try:
            yield
        finally:
            self.release(key)


# Shared guard for the API process
generation_guard = SingleFlight()
