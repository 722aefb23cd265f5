"""Periodic heartbeat task with an owned cancellation handle."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class HeartbeatScheduler:
    """Run *tick* on a worker thread: once immediately, then every *interval* seconds.

    Exceptions raised by *tick* are logged and the schedule continues.
    :meth:`stop` is synchronous, so no tick runs after it returns, except
    when it is called from inside a tick, where it only signals the worker.

    Args:
        tick: Callable run on every beat.
        interval: Seconds between the end of one tick and the next.
        name: Worker thread name.
    """

    def __init__(
        self,
        tick: Callable[[], None],
        interval: float = 5.0,
        name: str = "desklink-heartbeat",
    ) -> None:
        self._tick = tick
        self._interval = interval
        self._name = name
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        with self._lock:
            return (
                self._thread is not None
                and self._thread.is_alive()
                and self._stop_event is not None
                and not self._stop_event.is_set()
            )

    def start(self) -> None:
        """Start the schedule, replacing any running worker."""
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run, args=(stop_event,), name=self._name, daemon=True
        )
        with self._lock:
            previous = (self._thread, self._stop_event)
            self._thread, self._stop_event = thread, stop_event
        self._halt(*previous)
        thread.start()
        logger.debug("Heartbeat started (every %gs)", self._interval)

    def stop(self) -> None:
        """Cancel the schedule and wait for a running tick to finish. Idempotent."""
        with self._lock:
            previous = (self._thread, self._stop_event)
            self._thread, self._stop_event = None, None
        if previous[0] is not None:
            logger.debug("Heartbeat stopped")
        self._halt(*previous)

    @staticmethod
    def _halt(thread: Optional[threading.Thread], stop_event: Optional[threading.Event]) -> None:
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self._tick()
            except Exception:
                logger.exception("Heartbeat tick failed")
            if stop_event.wait(self._interval):
                break
