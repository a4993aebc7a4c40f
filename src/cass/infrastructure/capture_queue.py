from __future__ import annotations

from threading import RLock
from typing import List, Protocol


class CaptureQueueProvider(Protocol):
    def main_queue(self) -> List[str]: ...

    def extra_queue(self) -> List[str]: ...

    def clear_extra(self) -> None: ...

    def clear_all(self) -> None: ...


class InMemoryCaptureQueue:
    """Main and extra screenshot queues fed by the capture side.

    Reads return copies so callers never observe later mutations.
    """

    def __init__(self) -> None:
        self._main: List[str] = []
        self._extra: List[str] = []
        self._lock = RLock()

    def enqueue(self, path: str, extra: bool = False) -> List[str]:
        with self._lock:
            queue = self._extra if extra else self._main
            queue.append(path)
            return list(queue)

    def main_queue(self) -> List[str]:
        with self._lock:
            return list(self._main)

    def extra_queue(self) -> List[str]:
        with self._lock:
            return list(self._extra)

    def clear_extra(self) -> None:
        with self._lock:
            self._extra.clear()

    def clear_all(self) -> None:
        with self._lock:
            self._main.clear()
            self._extra.clear()


_queue = InMemoryCaptureQueue()


def get_capture_queue() -> InMemoryCaptureQueue:
    return _queue
