"""
Tests for the cancellation token and the bounded fan-out helper.
"""

import threading
import time

import pytest

from idp_scim_sync.concurrency import CancelToken, map_concurrently
from idp_scim_sync.errors import SyncCancelledError


class TestCancelToken:
    """Test class for CancelToken"""

    def test_fresh_token_is_not_cancelled(self):
        token = CancelToken()
        assert not token.cancelled
        assert token.remaining() is None
        token.raise_if_cancelled("fetch")

    def test_cancel(self):
        token = CancelToken()
        token.cancel()

        with pytest.raises(SyncCancelledError) as excinfo:
            token.raise_if_cancelled("apply")

        assert excinfo.value.phase == "apply"

    def test_deadline(self):
        token = CancelToken(deadline=time.monotonic() - 1)

        assert token.cancelled
        assert token.remaining() == 0.0
        with pytest.raises(SyncCancelledError, match="deadline exceeded"):
            token.raise_if_cancelled("persist")

    def test_with_timeout(self):
        token = CancelToken.with_timeout(60)
        assert not token.cancelled
        assert 0 < token.remaining() <= 60


class TestMapConcurrently:
    """Test class for map_concurrently"""

    def test_results_keep_input_order(self):
        def slow_square(n):
            time.sleep(0.01 * (5 - n))
            return n * n

        assert map_concurrently(slow_square, [1, 2, 3, 4], max_workers=4) == [1, 4, 9, 16]

    def test_empty_input(self):
        assert map_concurrently(lambda x: x, []) == []

    def test_concurrency_is_bounded(self):
        lock = threading.Lock()
        active = []
        peak = []

        def work(_):
            with lock:
                active.append(1)
                peak.append(len(active))
            time.sleep(0.02)
            with lock:
                active.pop()

        map_concurrently(work, range(12), max_workers=3)

        assert max(peak) <= 3

    def test_first_error_cancels_remaining_work(self):
        started = []

        def work(n):
            started.append(n)
            if n == 0:
                raise RuntimeError("boom")
            time.sleep(0.05)
            return n

        with pytest.raises(RuntimeError, match="boom"):
            map_concurrently(work, list(range(50)), max_workers=2)

        assert len(started) < 50

    def test_cancelled_token_raises(self):
        token = CancelToken()
        token.cancel()
        calls = []

        with pytest.raises(SyncCancelledError):
            map_concurrently(calls.append, [1, 2, 3], token=token)

        assert calls == []
