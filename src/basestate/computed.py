"""Computed values — memoized, read-only derived state.

A Computed is a Signal plus the Effect that writes it. The effect re-runs
whenever the derivation's inputs change, but writes through to the signal only
when the new result is not identical to the stored one, so readers of the
Computed are not re-run for unchanged derivations.

Unlike a lazy cache, a Computed evaluates eagerly: fn runs once on creation
and again on every upstream change.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from basestate._tracking import Tracker
from basestate.effect import Effect
from basestate.signal import Signal, same_value

T = TypeVar("T")

_UNSET = object()


class Computed(Generic[T]):
    """A derived value kept in sync with its function by an owned Effect."""

    __slots__ = ("_fn", "_signal", "_effect")

    def __init__(self, fn: Callable[[], T], *, tracker: Tracker | None = None) -> None:
        self._fn = fn
        self._signal: Signal = Signal(_UNSET, tracker=tracker)
        self._effect = Effect(self._recompute, tracker=tracker)
        self._effect.run()

    def _recompute(self) -> None:
        value = self._fn()
        if not same_value(self._signal.peek(), value):
            self._signal._write(value)

    def get(self) -> T:
        """Read the current value. Inside an effect, registers the dependency."""
        return self._signal.get()

    __call__ = get

    def dispose(self) -> None:
        """Stop recomputing. The last value stays readable."""
        self._effect.dispose()

    @property
    def disposed(self) -> bool:
        return self._effect.disposed

    def __repr__(self) -> str:
        name = getattr(self._fn, "__name__", "computed")
        return f"Computed({name}, {self._signal.peek()!r})"


def computed(fn: Callable[[], T] | None = None, *, tracker: Tracker | None = None):
    """Decorator/factory to create a Computed from a function.

    Usage:
        count, set_count = signal(3)

        @computed
        def doubled():
            return count() * 2

        doubled()  # 6
        set_count(5)
        doubled()  # 10

    With a tracker, use it as @computed(tracker=t) or computed(fn, tracker=t).
    """
    if fn is None:
        return lambda f: Computed(f, tracker=tracker)
    return Computed(fn, tracker=tracker)
