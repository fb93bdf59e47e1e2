"""Pause control shared between the indexer and whoever drives it."""

import threading
from typing import Optional


class PauseToken:
    """Flag that suspends indexing between batches.

    Setting ``paused`` from any thread wakes waiters immediately; waiters
    also re-check at ``poll_interval`` so a cancellation is never missed.
    """

    def __init__(self, paused: bool = False):
        self._paused = paused
        self._condition = threading.Condition()

    @property
    def paused(self) -> bool:
        with self._condition:
            return self._paused

    @paused.setter
    def paused(self, value: bool) -> None:
        with self._condition:
            self._paused = value
            self._condition.notify_all()

    def wait_while_paused(
        self,
        poll_interval: float = 0.1,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Block until unpaused or until ``cancel_event`` is set."""
        with self._condition:
            while self._paused:
                if cancel_event is not None and cancel_event.is_set():
                    return
                self._condition.wait(poll_interval)
