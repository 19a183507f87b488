"""Background worker that runs queued maintenance tasks one at a time."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Deque, Mapping, Optional

_log = logging.getLogger(__name__)


class TaskKind(IntEnum):
    NA = 0
    REDNS_REDIRECTS = 1
    DNS_QUERY = 2
    DNS_REVERSE = 3


@dataclass
class Task:
    kind: TaskKind
    data: str = ""
    when: float = 0


class Tasker:
    """FIFO task queue with handlers per task kind and an optional worker thread."""

    def __init__(
        self,
        handlers: Optional[Mapping[TaskKind, Callable[[str], object]]] = None,
        interval: float = 2.0,
    ) -> None:
        self.handlers = dict(handlers or {})
        self.interval = interval
        self._queue: Deque[Task] = deque()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def schedule(self, kind: TaskKind, data: str = "", when: float = 0) -> None:
        with self._lock:
            self._queue.append(Task(TaskKind(kind), data, when))

    def run_once(self) -> Optional[Task]:
        """Run the oldest queued task; return it, or None if the queue was empty."""
        with self._lock:
            if not self._queue:
                return None
            task = self._queue.popleft()
        handler = self.handlers.get(task.kind)
        if handler is not None:
            handler(task.data)
        return task

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                _log.exception("task failed")
        _log.debug("tasker thread exits")

    def start(self) -> None:
        if self.running:
            raise RuntimeError("tasker already running")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="tasker", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None