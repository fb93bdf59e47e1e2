"""Tests for PauseToken."""

import threading
import time

from codebase_indexer.indexing.tokens import PauseToken


class TestPauseToken:
    def test_wait_returns_immediately_when_not_paused(self):
        started = time.monotonic()

        PauseToken().wait_while_paused(poll_interval=1.0)

        assert time.monotonic() - started < 0.5

    def test_unpausing_wakes_waiter(self):
        token = PauseToken(paused=True)
        finished = threading.Event()

        def wait():
            token.wait_while_paused(poll_interval=5.0)
            finished.set()

        waiter = threading.Thread(target=wait)
        waiter.start()
        time.sleep(0.05)
        assert not finished.is_set()

        token.paused = False
        waiter.join(timeout=2.0)

        assert finished.is_set()

    def test_cancel_releases_waiter(self):
        token = PauseToken(paused=True)
        cancel = threading.Event()
        cancel.set()

        token.wait_while_paused(poll_interval=0.01, cancel_event=cancel)

        assert token.paused
