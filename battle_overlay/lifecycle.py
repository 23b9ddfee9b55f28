from __future__ import annotations

import logging
import threading
from typing import List, Optional, Set


class LifecycleTracker:
    """Tracks worker threads started by the ingestion service so shutdown can join them."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._lock = threading.Lock()
        self._threads: Set[threading.Thread] = set()

    @property
    def threads(self) -> List[threading.Thread]:
        with self._lock:
            return list(self._threads)

    def track_thread(self, thread: Optional[threading.Thread]) -> None:
        if thread is None:
            return
        with self._lock:
            self._threads.add(thread)

    def untrack_thread(self, thread: Optional[threading.Thread]) -> None:
        if thread is None:
            return
        with self._lock:
            self._threads.discard(thread)

    def join_thread(self, thread: Optional[threading.Thread], name: Optional[str] = None, *, timeout: float = 2.0) -> None:
        if thread is None:
            return
        if thread is not threading.current_thread() and thread.ident is not None:
            thread.join(timeout=timeout)
        if thread.is_alive():
            self._logger.warning("Thread %s did not exit cleanly within %.1fs", name or thread.name, timeout)
        self.untrack_thread(thread)

    def join_all(self, *, timeout: float = 2.0) -> None:
        for thread in self.threads:
            self.join_thread(thread, timeout=timeout)

    def log_state(self, label: str) -> None:
        with self._lock:
            live_threads = [thr.name or repr(thr) for thr in self._threads if thr.is_alive()]
        if live_threads:
            self._logger.debug("Tracked threads %s: %s", label, live_threads)
