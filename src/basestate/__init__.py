"""basestate: fine-grained reactive state — signals, effects, computed values and stores."""

from importlib.metadata import version as _version

__version__ = _version("basestate")

from basestate._tracking import Tracker, current_tracker, untracked, use_tracker
from basestate.signal import Signal, signal, same_value
from basestate.effect import Effect, effect, on_cleanup
from basestate.computed import Computed, computed
from basestate.reactive import Value, Derived, Reactive, unwrap
from basestate.store import Store
from basestate.schema import SchemaError
from basestate.persistence import Storage, MemoryStorage, FileStorage, set_storage, get_storage
# textual NOT auto-imported — opt-in only

__all__ = [
    "Tracker",
    "current_tracker",
    "untracked",
    "use_tracker",
    "Signal",
    "signal",
    "same_value",
    "Effect",
    "effect",
    "on_cleanup",
    "Computed",
    "computed",
    "Value",
    "Derived",
    "Reactive",
    "unwrap",
    "Store",
    "SchemaError",
    "Storage",
    "MemoryStorage",
    "FileStorage",
    "set_storage",
    "get_storage",
]
