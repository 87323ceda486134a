"""Effects — computations that re-run when the signals they read change.

An Effect runs its body once on creation to discover its dependencies. Every
signal read during a run appends an unsubscribe closure to the effect's cleanup
list; before the next run (and on dispose) the whole list is invoked and
cleared, so the dependency set always reflects the most recent run only.

An Effect created while another one is running is owned by it: its dispose()
goes into the parent's cleanup list, and tearing down the parent tears down
every descendant.
"""

from __future__ import annotations

from typing import Callable

from basestate import _anchor
from basestate._tracking import Tracker, resolve


class Effect:
    """A reactive side effect that re-runs when its dependencies change."""

    __slots__ = ("_id", "_fn", "_cleanups", "_disposed", "_tracker")

    def __init__(self, fn: Callable[[], None], *, tracker: Tracker | None = None) -> None:
        self._id = _anchor.new_id()
        self._fn = fn
        self._cleanups: list[Callable[[], None]] = []
        self._disposed = False
        self._tracker = resolve(tracker)
        _anchor.register(self._id, self)

        parent = self._tracker.active
        if parent is not None:
            parent._cleanups.append(self.dispose)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def run(self) -> None:
        """Clean up the previous run, then re-evaluate the body with tracking."""
        if self._disposed:
            return
        self._run_cleanups()
        self._tracker.run(self, self._fn)

    def dispose(self) -> None:
        """Stop this effect and every effect created inside it."""
        if self._disposed:
            return
        self._disposed = True
        _anchor.release(self._id)
        self._run_cleanups()

    def _run_cleanups(self) -> None:
        # Swap first: cleanups may register new ones (a child disposing itself).
        cleanups, self._cleanups = self._cleanups, []
        error: Exception | None = None
        for cleanup in cleanups:
            try:
                cleanup()
            except Exception as exc:
                if error is None:
                    error = exc
        if error is not None:
            raise error

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        name = getattr(self._fn, "__name__", "effect")
        return f"Effect({name}, {state})"


def effect(fn: Callable[[], None], *, tracker: Tracker | None = None) -> Effect:
    """Run fn immediately, then re-run whenever any signal it reads changes.

    Returns the Effect (call .dispose() to stop).

    Usage:
        count, set_count = signal(0)
        log = []

        e = effect(lambda: log.append(count()))
        # log == [0] — ran immediately

        set_count(1)
        # log == [0, 1]

        e.dispose()
        set_count(2)
        # log == [0, 1] — stopped
    """
    e = Effect(fn, tracker=tracker)
    e.run()  # Initial run to establish dependencies
    return e


def on_cleanup(fn: Callable[[], None], *, tracker: Tracker | None = None) -> None:
    """Register fn to run before the active effect's next run or on its disposal."""
    computation = resolve(tracker).active
    if computation is None:
        raise RuntimeError("on_cleanup() called outside of a running effect")
    computation._cleanups.append(fn)
