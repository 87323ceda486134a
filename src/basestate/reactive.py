"""Reactive[T] — a value that is either fixed or derived from signals.

Consumers that accept "a value or something that produces one" take a
Reactive and call unwrap() on it, instead of probing at runtime whether the
argument happens to be callable. Calling unwrap() inside an effect tracks the
signals a Derived reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Value(Generic[T]):
    """A constant."""

    value: T


@dataclass(frozen=True)
class Derived(Generic[T]):
    """A zero-argument getter, typically a signal getter or a Computed."""

    fn: Callable[[], T]


Reactive = Union[Value[T], Derived[T]]


def unwrap(reactive: Reactive[T]) -> T:
    """Resolve a Reactive to its current value."""
    if isinstance(reactive, Value):
        return reactive.value
    if isinstance(reactive, Derived):
        return reactive.fn()
    raise TypeError(f"expected Value or Derived, got {type(reactive).__name__}")


def is_derived(reactive: Reactive) -> bool:
    return isinstance(reactive, Derived)
