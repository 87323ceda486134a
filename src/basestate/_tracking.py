"""Dependency tracking — the heart of basestate.

A Tracker holds the currently-running computation. While a computation runs,
any Signal.get() registers itself as a dependency of it. Trackers are plain
objects and can be passed explicitly to signals and effects; when none is
passed, the ambient tracker from a ContextVar is used. Either way the tracker
is bound at creation, so a signal and the effects reading it must share one.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, TypeVar

if TYPE_CHECKING:
    from basestate.effect import Effect

T = TypeVar("T")


class Tracker:
    """Holds the active computation and swaps it around nested runs.

    The active slot is a ContextVar, so each thread (and each context) sees its
    own running computation even when they share one Tracker.
    """

    __slots__ = ("_active",)

    def __init__(self) -> None:
        self._active: contextvars.ContextVar[Effect | None] = contextvars.ContextVar(
            "active_computation", default=None
        )

    @property
    def active(self) -> Effect | None:
        return self._active.get()

    def run(self, computation: Effect | None, body: Callable[[], T]) -> T:
        """Run body with computation active, restoring the previous one on exit."""
        token = self._active.set(computation)
        try:
            return body()
        finally:
            self._active.reset(token)

    def untracked(self, fn: Callable[[], T]) -> T:
        """Run fn without registering any dependencies."""
        return self.run(None, fn)

    def __repr__(self) -> str:
        return f"Tracker(active={self.active!r})"


# One process-wide default, so signals made on a worker thread stay readable by
# effects on the main thread. Its active slot is still per thread.
_default_tracker = Tracker()

_current_tracker: contextvars.ContextVar[Tracker] = contextvars.ContextVar(
    "current_tracker", default=_default_tracker
)


def current_tracker() -> Tracker:
    """The ambient tracker used when none is passed explicitly."""
    return _current_tracker.get()


def resolve(tracker: Tracker | None) -> Tracker:
    return tracker if tracker is not None else _current_tracker.get()


@contextmanager
def use_tracker(tracker: Tracker):
    """Install tracker as the ambient default for the duration of the block.

    Usage:
        with use_tracker(Tracker()):
            get, set = signal(0)
            effect(lambda: print(get()))
    """
    token = _current_tracker.set(tracker)
    try:
        yield tracker
    finally:
        _current_tracker.reset(token)


def untracked(fn: Callable[[], T], tracker: Tracker | None = None) -> T:
    """Read signals inside fn without subscribing the active computation."""
    return resolve(tracker).untracked(fn)
