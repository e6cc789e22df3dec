"""Background history refresh.

One daemon thread drains a queue of symbols through the history scheduler,
so requests can return straight away while history catches up. A symbol is
queued at most once until its fetch finishes.
"""

from __future__ import annotations

import logging
import queue
from threading import Event, Lock, Thread
from typing import Iterable, List, Optional

from marketfeed.history import HistoryFetchScheduler
from marketfeed.inflight import InflightRegistry

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.5


class HistoryWorker:
    def __init__(self, scheduler: HistoryFetchScheduler, registry: InflightRegistry) -> None:
        self.scheduler = scheduler
        self.registry = registry
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self._thread_lock = Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._thread_lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = Thread(target=self._run, name="history-worker", daemon=True)
            self._thread.start()
            logger.info("history worker started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        with self._thread_lock:
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout)
            logger.info("history worker stopped")
        dropped = self._drain()
        if dropped:
            logger.info("dropped %d queued history refresh(es) on stop", dropped)

    def submit(self, symbols: Iterable[str]) -> List[str]:
        """Queue symbols not already in flight; return the newly queued ones."""
        queued = []
        for symbol in symbols:
            if self.registry.claim(symbol):
                self._queue.put(symbol)
                queued.append(symbol)
        if queued:
            self.start()
        return queued

    def join(self) -> None:
        """Block until every queued symbol has been processed."""
        self._queue.join()

    def _drain(self) -> int:
        dropped = 0
        while True:
            try:
                symbol = self._queue.get_nowait()
            except queue.Empty:
                return dropped
            self.registry.release(symbol)
            self._queue.task_done()
            dropped += 1

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                symbol = self._queue.get(timeout=_POLL_SECONDS)
            except queue.Empty:
                continue
            try:
                self.scheduler.refresh_symbol(symbol)
            except Exception:
                logger.exception("history worker failed on %s", symbol)
            finally:
                self.registry.release(symbol)
                self._queue.task_done()
