"""
Concurrency Helpers

Cancellation token and a bounded fan-out helper used for the read-only
lookups of the fetch phase and for secret retrieval during setup.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence, TypeVar

from .errors import SyncCancelledError


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_WORKERS = 10


class CancelToken:
    """
    Caller supplied cancellation signal with an optional deadline.

    The deadline is an absolute ``time.monotonic()`` value. Work checks the
    token between blocking calls; an in-flight network call is bounded by its
    own timeout.
    """

    def __init__(self, deadline: Optional[float] = None):
        self.deadline = deadline
        self._event = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self, phase: str) -> None:
        if self._event.is_set():
            raise SyncCancelledError(phase)
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise SyncCancelledError(phase, "deadline exceeded")


def map_concurrently(
    func: Callable[[T], R],
    items: Sequence[T],
    max_workers: int = DEFAULT_MAX_WORKERS,
    token: Optional[CancelToken] = None,
    phase: str = "fetch",
) -> List[R]:
    """
    Call ``func`` on every item with at most ``max_workers`` threads.

    This is a join point: it returns only once every call has finished, with
    results in the order of ``items``. The first exception cancels the calls
    that have not started yet and is re-raised once the running ones return.

    Raises:
        SyncCancelledError: If ``token`` is cancelled before all calls ran
    """
    if not items:
        return []

    stop = threading.Event()

    def run(item: T) -> R:
        if stop.is_set():
            raise SyncCancelledError(phase, "cancelled after an earlier failure")
        if token is not None:
            token.raise_if_cancelled(phase)
        return func(item)

    executor = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items))))
    try:
        futures = [executor.submit(run, item) for item in items]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        failed = [future for future in futures if future in done and future.exception() is not None]
        if failed:
            stop.set()
            for future in pending:
                future.cancel()
            logger.debug(f"Cancelled {len(pending)} pending lookups after a failure")
            raise failed[0].exception()
        return [future.result() for future in futures]
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
