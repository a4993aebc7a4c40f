from __future__ import annotations

from threading import RLock
from typing import Protocol

from ..domain.processing_models import View


class ViewStateProvider(Protocol):
    def get_view(self) -> View: ...

    def set_view(self, view: View) -> None: ...

    def has_followed_up(self) -> bool: ...

    def set_has_followed_up(self, value: bool) -> None: ...


class InMemoryViewState:
    def __init__(self, view: View = "initial") -> None:
        self._view: View = view
        self._has_followed_up = False
        self._lock = RLock()

    def get_view(self) -> View:
        with self._lock:
            return self._view

    def set_view(self, view: View) -> None:
        with self._lock:
            self._view = view

    def has_followed_up(self) -> bool:
        with self._lock:
            return self._has_followed_up

    def set_has_followed_up(self, value: bool) -> None:
        with self._lock:
            self._has_followed_up = bool(value)


_view_state = InMemoryViewState()


def get_view_state() -> InMemoryViewState:
    return _view_state
