"""Signals — mutable cells that track their readers.

When a Signal is read while an Effect is running, the effect is registered as
a dependent and receives a cleanup closure that removes it again. When the
Signal changes, every dependent re-runs synchronously, before set() returns.

Dependents are stored as computation ids and resolved through _anchor at
notification time.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Callable, Generic, TypeVar

from basestate import _anchor
from basestate import persistence
from basestate._tracking import Tracker, resolve

logger = logging.getLogger("basestate.signal")

T = TypeVar("T")

_SCALARS = (int, float, complex, str, bytes, bool, type(None))


def same_value(a: object, b: object) -> bool:
    """Identity test used to gate notifications.

    Objects compare by identity. Immutable scalars of the same type compare by
    value, and NaN is the same as NaN.
    """
    if a is b:
        return True
    if type(a) is not type(b) or not isinstance(a, _SCALARS):
        return False
    if isinstance(a, float) and math.isnan(a) and math.isnan(b):
        return True
    return a == b


class Signal(Generic[T]):
    """A single observable value with automatic dependency tracking."""

    __slots__ = ("_value", "_dependents", "_key", "_storage", "_tracker")

    def __init__(
        self,
        value: T,
        *,
        key: str | None = None,
        storage: persistence.Storage | None = None,
        tracker: Tracker | None = None,
    ) -> None:
        self._dependents: dict[int, None] = {}
        self._key = key
        self._storage = storage
        self._tracker = resolve(tracker)
        self._value = self._load(value) if key is not None else value

    @property
    def key(self) -> str | None:
        return self._key

    def _adapter(self) -> persistence.Storage:
        return self._storage if self._storage is not None else persistence.get_storage()

    def _load(self, initial: T) -> T:
        try:
            stored = self._adapter().load(self._key)
            if stored is not None:
                return json.loads(stored)
        except Exception:
            logger.exception("Error loading stored signal %r, using initial value", self._key)
        return initial

    def _save(self) -> None:
        try:
            self._adapter().save(self._key, json.dumps(self._value))
        except Exception:
            logger.exception("Error saving signal %r", self._key)

    def get(self) -> T:
        """Read the value. If an effect is running, registers the dependency."""
        computation = self._tracker.active
        if (
            computation is not None
            and not computation._disposed
            and computation._id not in self._dependents
        ):
            comp_id = computation._id
            self._dependents[comp_id] = None
            computation._cleanups.append(lambda: self._dependents.pop(comp_id, None))
        return self._value

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return self._value

    def set(self, value: T | Callable[[T], T]) -> None:
        """Write a value, or apply an updater function to the previous value."""
        self._write(value(self._value) if callable(value) else value)

    def update(self, fn: Callable[[T], T]) -> None:
        """Apply fn to the previous value and write the result."""
        self._write(fn(self._value))

    def _write(self, new_value: T) -> None:
        if same_value(self._value, new_value):
            return
        self._value = new_value
        if self._key is not None:
            self._save()
        self._notify()

    def _notify(self) -> None:
        """Re-run every dependent registered at the time of the change."""
        for comp_id in list(self._dependents):
            computation = _anchor.lookup(comp_id)
            if computation is not None:
                computation.run()

    @property
    def dependent_count(self) -> int:
        return len(self._dependents)

    def __repr__(self) -> str:
        if self._key is not None:
            return f"Signal({self._value!r}, key={self._key!r})"
        return f"Signal({self._value!r})"


def signal(
    value: T,
    *,
    key: str | None = None,
    storage: persistence.Storage | None = None,
    tracker: Tracker | None = None,
) -> tuple[Callable[[], T], Callable[[Any], None]]:
    """Create a Signal and return its (get, set) pair.

    Usage:
        count, set_count = signal(0)
        set_count(1)
        set_count(lambda n: n + 1)
        count()  # 2

    With key=, the value is loaded from and written through to storage:
        theme, set_theme = signal("light", key="theme")
    """
    s = Signal(value, key=key, storage=storage, tracker=tracker)
    return s.get, s.set
