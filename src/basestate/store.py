"""Store — keyed values plus nested tables, with listeners and transactions.

A Store holds two kinds of data:

    values: {value_id: value}
    tables: {table_id: {row_id: {cell_id: value}}}

Every addressable piece (a value, all values, a table, all tables, a row, a
cell) has its own listener registry. Outside a transaction, listeners fire
right after the mutation, finest scope first, then each enclosing scope. Inside
a transaction, changes are queued and fired once when the outermost
transaction exits, in the order: value, values, table, row, cell, tables.

Listener ids are strings unique within the store; del_listener() removes one
from whichever registry it lives in. A listener that raises is logged and never
stops the other listeners or the mutation.

Store notifications are independent of signals and effects: a transaction
defers store listeners only.
"""

from __future__ import annotations

import copy
import itertools
import json
import logging
import secrets
import string
from contextlib import contextmanager
from typing import Any, Callable, Iterator, NamedTuple

from basestate import schema as _schema
from basestate.schema import MISSING

logger = logging.getLogger("basestate.store")

Listener = Callable[..., None]

# Registry scopes. Aggregate scopes ("values", "tables", "invalid_*") use the key None.
SCOPES = ("value", "values", "table", "tables", "row", "cell", "invalid_value", "invalid_cell")

# Order in which queued changes fire when a transaction ends.
FLUSH_ORDER = ("value", "values", "table", "row", "cell", "tables")

_ROW_ID_ALPHABET = string.digits + string.ascii_lowercase


def random_row_id() -> str:
    return "".join(secrets.choice(_ROW_ID_ALPHABET) for _ in range(8))


class Change(NamedTuple):
    """A queued change record. key is a value id, table id, or id tuple."""

    kind: str
    key: Any = None
    new: Any = None
    old: Any = None


class Store:
    """Keyed values and tabular data with per-scope listeners."""

    def __init__(
        self,
        values: dict | None = None,
        tables: dict | None = None,
        *,
        values_schema: dict | None = None,
        tables_schema: dict | None = None,
        id_factory: Callable[[], str] = random_row_id,
    ) -> None:
        self._values: dict[str, Any] = dict(values) if values else {}
        self._tables: dict[str, dict[str, dict[str, Any]]] = {
            table_id: {row_id: dict(row) for row_id, row in rows.items()}
            for table_id, rows in (tables or {}).items()
        }
        self._values_schema: dict[str, dict] = {}
        self._tables_schema: dict[str, dict[str, dict]] = {}
        self._id_factory = id_factory

        self._listeners: dict[str, dict[Any, dict[str, Listener]]] = {scope: {} for scope in SCOPES}
        self._listener_index: dict[str, tuple[str, Any]] = {}
        self._listener_ids = itertools.count(1)

        self._depth = 0
        self._queue: list[Change] = []

        if values_schema:
            self.set_values_schema(values_schema)
        if tables_schema:
            self.set_tables_schema(tables_schema)

    # --- Keyed values ---

    def get_values(self) -> dict[str, Any]:
        return dict(self._values)

    def get_value_ids(self) -> list[str]:
        return list(self._values)

    def get_value(self, value_id: str, default: Any = None) -> Any:
        return self._values.get(value_id, default)

    def has_value(self, value_id: str) -> bool:
        return value_id in self._values

    def for_each_value(self, fn: Callable[[str, Any], None]) -> None:
        for value_id, value in list(self._values.items()):
            fn(value_id, value)

    def set_values(self, values: dict) -> Store:
        """Replace all values. Value listeners fire for every id that changed."""
        accepted, rejected = _schema.enforce(self._values_schema, values)
        old_values, self._values = self._values, accepted
        self._report_invalid_values(rejected)

        changes = [
            Change("value", value_id, accepted.get(value_id), old_values.get(value_id))
            for value_id in _changed_keys(old_values, accepted)
        ]
        changes.append(Change("values"))
        self._changed(changes)
        return self

    def set_partial_values(self, values: dict) -> Store:
        with self.transaction():
            for value_id, value in values.items():
                self.set_value(value_id, value)
        return self

    def set_value(self, value_id: str, value: Any) -> Store:
        field = self._values_schema.get(value_id)
        if field is not None and not _schema.matches(field["type"], value):
            self._report_invalid_values([(value_id, value)])
        accepted = _schema.coerce(field, value)

        old = self._values.get(value_id)
        if accepted is MISSING:
            self._values.pop(value_id, None)
            accepted = None
        else:
            self._values[value_id] = accepted
        self._changed([Change("value", value_id, accepted, old), Change("values")])
        return self

    def del_value(self, value_id: str) -> Store:
        if value_id in self._values:
            old = self._values.pop(value_id)
            self._changed([Change("value", value_id, None, old), Change("values")])
        return self

    def del_values(self) -> Store:
        old_values, self._values = self._values, {}
        changes = [Change("value", value_id, None, old) for value_id, old in old_values.items()]
        changes.append(Change("values"))
        self._changed(changes)
        return self

    # --- Tables ---

    def get_tables(self) -> dict[str, dict[str, dict[str, Any]]]:
        return copy.deepcopy(self._tables)

    def get_table_ids(self) -> list[str]:
        return list(self._tables)

    def get_table(self, table_id: str) -> dict[str, dict[str, Any]] | None:
        rows = self._tables.get(table_id)
        if rows is None:
            return None
        return {row_id: dict(row) for row_id, row in rows.items()}

    def has_table(self, table_id: str) -> bool:
        return table_id in self._tables

    def for_each_table(self, fn: Callable[[str, dict], None]) -> None:
        for table_id in list(self._tables):
            fn(table_id, self.get_table(table_id))

    def set_tables(self, tables: dict) -> Store:
        """Replace all tables, applying the tables schema to every row."""
        old_tables = self._tables
        self._tables = {
            table_id: {row_id: self._enforce_row(table_id, row_id, row) for row_id, row in rows.items()}
            for table_id, rows in tables.items()
        }
        changes = []
        for table_id in _changed_keys(old_tables, self._tables):
            changes.extend(self._table_changes(table_id, old_tables.get(table_id), self._tables.get(table_id)))
        changes.append(Change("tables"))
        self._changed(changes)
        return self

    def set_table(self, table_id: str, table: dict) -> Store:
        old_rows = self._tables.get(table_id)
        self._tables[table_id] = {
            row_id: self._enforce_row(table_id, row_id, row) for row_id, row in table.items()
        }
        changes = self._table_changes(table_id, old_rows, self._tables[table_id])
        changes.append(Change("tables"))
        self._changed(changes)
        return self

    def del_table(self, table_id: str) -> Store:
        if table_id in self._tables:
            old_rows = self._tables.pop(table_id)
            changes = self._table_changes(table_id, old_rows, None)
            changes.append(Change("tables"))
            self._changed(changes)
        return self

    def del_tables(self) -> Store:
        old_tables, self._tables = self._tables, {}
        changes = []
        for table_id, old_rows in old_tables.items():
            changes.extend(self._table_changes(table_id, old_rows, None))
        changes.append(Change("tables"))
        self._changed(changes)
        return self

    # --- Rows ---

    def get_row_ids(self, table_id: str) -> list[str]:
        return list(self._tables.get(table_id, ()))

    def get_sorted_row_ids(
        self,
        table_id: str,
        key: Callable[[str, dict], Any] | None = None,
        reverse: bool = False,
    ) -> list[str]:
        """Row ids sorted by id, or by key(row_id, row) when given."""
        rows = self._tables.get(table_id, {})
        if key is None:
            return sorted(rows, reverse=reverse)
        return sorted(rows, key=lambda row_id: key(row_id, dict(rows[row_id])), reverse=reverse)

    def get_row(self, table_id: str, row_id: str) -> dict[str, Any] | None:
        row = self._tables.get(table_id, {}).get(row_id)
        return dict(row) if row is not None else None

    def has_row(self, table_id: str, row_id: str) -> bool:
        return row_id in self._tables.get(table_id, ())

    def for_each_row(self, table_id: str, fn: Callable[[str, dict], None]) -> None:
        for row_id in self.get_row_ids(table_id):
            fn(row_id, self.get_row(table_id, row_id))

    def set_row(self, table_id: str, row_id: str, row: dict) -> Store:
        rows = self._tables.setdefault(table_id, {})
        old_row = rows.get(row_id)
        rows[row_id] = self._enforce_row(table_id, row_id, row)
        changes = self._row_changes(table_id, row_id, old_row, rows[row_id])
        changes += [Change("table", table_id), Change("tables")]
        self._changed(changes)
        return self

    def set_partial_row(self, table_id: str, row_id: str, row: dict) -> Store:
        merged = self.get_row(table_id, row_id) or {}
        merged.update(row)
        return self.set_row(table_id, row_id, merged)

    def add_row(self, table_id: str, row: dict) -> str:
        """Store row under a fresh random id and return the id."""
        rows = self._tables.get(table_id, {})
        row_id = self._id_factory()
        while row_id in rows:
            row_id = self._id_factory()
        self.set_row(table_id, row_id, row)
        return row_id

    def del_row(self, table_id: str, row_id: str) -> Store:
        rows = self._tables.get(table_id)
        if rows is not None and row_id in rows:
            old_row = rows.pop(row_id)
            changes = self._row_changes(table_id, row_id, old_row, None)
            changes += [Change("table", table_id), Change("tables")]
            self._changed(changes)
        return self

    # --- Cells ---

    def get_cell_ids(self, table_id: str, row_id: str) -> list[str]:
        return list(self._tables.get(table_id, {}).get(row_id, ()))

    def get_table_cell_ids(self, table_id: str) -> dict[str, list[str]]:
        """{row_id: [cell_id, ...]} for every row in the table."""
        return {row_id: list(row) for row_id, row in self._tables.get(table_id, {}).items()}

    def get_cell(self, table_id: str, row_id: str, cell_id: str, default: Any = None) -> Any:
        return self._tables.get(table_id, {}).get(row_id, {}).get(cell_id, default)

    def has_cell(self, table_id: str, row_id: str, cell_id: str) -> bool:
        return cell_id in self._tables.get(table_id, {}).get(row_id, ())

    def for_each_cell(self, table_id: str, row_id: str, fn: Callable[[str, Any], None]) -> None:
        for cell_id, value in list(self._tables.get(table_id, {}).get(row_id, {}).items()):
            fn(cell_id, value)

    def set_cell(self, table_id: str, row_id: str, cell_id: str, value: Any) -> Store:
        field = self._tables_schema.get(table_id, {}).get(cell_id)
        if field is not None and not _schema.matches(field["type"], value):
            self._report_invalid_cells(table_id, row_id, [(cell_id, value)])
        accepted = _schema.coerce(field, value)

        row = self._tables.setdefault(table_id, {}).setdefault(row_id, {})
        old = row.get(cell_id)
        if accepted is MISSING:
            row.pop(cell_id, None)
            accepted = None
        else:
            row[cell_id] = accepted
        self._changed([
            Change("cell", (table_id, row_id, cell_id), accepted, old),
            Change("row", (table_id, row_id)),
            Change("table", table_id),
            Change("tables"),
        ])
        return self

    def del_cell(self, table_id: str, row_id: str, cell_id: str) -> Store:
        row = self._tables.get(table_id, {}).get(row_id)
        if row is not None and cell_id in row:
            old = row.pop(cell_id)
            self._changed([
                Change("cell", (table_id, row_id, cell_id), None, old),
                Change("row", (table_id, row_id)),
                Change("table", table_id),
                Change("tables"),
            ])
        return self

    # --- Schemas ---

    def set_values_schema(self, schema: dict) -> Store:
        """Install a values schema and re-apply it to the stored values."""
        self._values_schema = _schema.values_schema(schema)
        return self.set_values(self._values)

    def get_values_schema(self) -> dict:
        return copy.deepcopy(self._values_schema)

    def del_values_schema(self) -> Store:
        self._values_schema = {}
        return self.set_values(self._values)

    def set_tables_schema(self, schema: dict) -> Store:
        """Install a tables schema and re-apply it to every stored row."""
        self._tables_schema = _schema.tables_schema(schema)
        return self.set_tables(self._tables)

    def get_tables_schema(self) -> dict:
        return copy.deepcopy(self._tables_schema)

    def del_tables_schema(self) -> Store:
        self._tables_schema = {}
        return self.set_tables(self._tables)

    def _enforce_row(self, table_id: str, row_id: str, row: dict) -> dict:
        cells_schema = self._tables_schema.get(table_id)
        if not cells_schema:
            return dict(row)
        accepted, rejected = _schema.enforce(cells_schema, row)
        self._report_invalid_cells(table_id, row_id, rejected)
        return accepted

    def _report_invalid_values(self, rejected: list[tuple[str, Any]]) -> None:
        for value_id, value in rejected:
            self._fire("invalid_value", None, lambda: (value_id, value))

    def _report_invalid_cells(self, table_id: str, row_id: str, rejected: list[tuple[str, Any]]) -> None:
        for cell_id, value in rejected:
            self._fire("invalid_cell", None, lambda: (table_id, row_id, cell_id, value))

    # --- Serialization ---

    def get_json(self) -> str:
        return json.dumps({"values": self._values, "tables": self._tables})

    def set_json(self, text: str) -> Store:
        """Replace values and tables from get_json() output."""
        data = json.loads(text)
        with self.transaction():
            self.set_values(data.get("values") or {})
            self.set_tables(data.get("tables") or {})
        return self

    def get_schema_json(self) -> str:
        return json.dumps({"values": self._values_schema, "tables": self._tables_schema})

    # --- Transactions ---

    def transaction(self, fn: Callable[[], Any] | None = None):
        """Batch listener notifications.

        With fn, runs it inside a transaction and returns its result.
        Without, returns a context manager:

            with store.transaction():
                store.set_value("a", 1)
                store.set_cell("t", "r", "c", 2)
            # listeners fire here, once each
        """
        if fn is None:
            return self._transaction_scope()
        with self._transaction_scope():
            return fn()

    @contextmanager
    def _transaction_scope(self) -> Iterator[Store]:
        self._depth += 1
        try:
            yield self
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._flush()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _changed(self, changes: list[Change]) -> None:
        if self._depth > 0:
            self._queue.extend(changes)
        else:
            for change in changes:
                self._emit(change)

    def _flush(self) -> None:
        """Fire queued changes once per address, coarse values before fine tables."""
        queue, self._queue = self._queue, []
        if not queue:
            return
        merged: dict[tuple[str, Any], Change] = {}
        for change in queue:
            address = (change.kind, change.key)
            first = merged.get(address)
            # Keep the oldest "old" and the newest "new".
            merged[address] = change if first is None else first._replace(new=change.new)
        logger.debug("Flushing transaction: %d changes, %d addresses", len(queue), len(merged))
        for kind in FLUSH_ORDER:
            for change in merged.values():
                if change.kind == kind:
                    self._emit(change)

    def _emit(self, change: Change) -> None:
        kind, key = change.kind, change.key
        if kind == "value" or kind == "cell":
            self._fire(kind, key, lambda: (change.new, change.old))
        elif kind == "values":
            self._fire(kind, None, lambda: (self.get_values(),))
        elif kind == "table":
            self._fire(kind, key, lambda: (self.get_table(key),))
        elif kind == "row":
            self._fire(kind, key, lambda: (self.get_row(*key),))
        elif kind == "tables":
            self._fire(kind, None, lambda: (self.get_tables(),))

    def _fire(self, scope: str, key: Any, make_args: Callable[[], tuple]) -> None:
        registry = self._listeners[scope].get(key)
        if not registry:
            return
        for listener_id, fn in list(registry.items()):
            try:
                fn(*make_args())
            except Exception:
                logger.exception("Listener %s on %s %r failed", listener_id, scope, key)

    def _table_changes(self, table_id: str, old_rows: dict | None, new_rows: dict | None) -> list[Change]:
        old_rows = old_rows or {}
        new_rows = new_rows or {}
        changes = []
        for row_id in _changed_keys(old_rows, new_rows):
            changes.extend(self._row_changes(table_id, row_id, old_rows.get(row_id), new_rows.get(row_id)))
        changes.append(Change("table", table_id))
        return changes

    def _row_changes(self, table_id: str, row_id: str, old_row: dict | None, new_row: dict | None) -> list[Change]:
        old_row = old_row or {}
        new_row = new_row or {}
        changes = [
            Change("cell", (table_id, row_id, cell_id), new_row.get(cell_id), old_row.get(cell_id))
            for cell_id in _changed_keys(old_row, new_row)
        ]
        changes.append(Change("row", (table_id, row_id)))
        return changes

    # --- Listeners ---

    def _add_listener(self, scope: str, key: Any, fn: Listener) -> str:
        listener_id = f"l{next(self._listener_ids)}"
        self._listeners[scope].setdefault(key, {})[listener_id] = fn
        self._listener_index[listener_id] = (scope, key)
        return listener_id

    def _add_projection_listener(
        self, scope: str, key: Any, project: Callable[[], Any], fn: Callable[[Any, Any], None]
    ) -> str:
        """Recompute project() whenever scope fires; call fn(now, prev) if it differs."""
        prev = project()

        def check(*_args) -> None:
            nonlocal prev
            now = project()
            if now != prev:
                old, prev = prev, now
                fn(now, old)

        return self._add_listener(scope, key, check)

    def add_value_listener(self, value_id: str, fn: Callable[[Any, Any], None]) -> str:
        """fn(new, old) after value_id is set or deleted."""
        return self._add_listener("value", value_id, fn)

    def add_values_listener(self, fn: Callable[[dict], None]) -> str:
        """fn(values) after any value changes."""
        return self._add_listener("values", None, fn)

    def add_value_ids_listener(self, fn: Callable[[list, list], None]) -> str:
        return self._add_projection_listener("values", None, self.get_value_ids, fn)

    def add_has_value_listener(self, value_id: str, fn: Callable[[bool, bool], None]) -> str:
        return self._add_projection_listener("values", None, lambda: self.has_value(value_id), fn)

    def add_table_listener(self, table_id: str, fn: Callable[[dict | None], None]) -> str:
        """fn(table) after anything in table_id changes; None once deleted."""
        return self._add_listener("table", table_id, fn)

    def add_tables_listener(self, fn: Callable[[dict], None]) -> str:
        return self._add_listener("tables", None, fn)

    def add_table_ids_listener(self, fn: Callable[[list, list], None]) -> str:
        return self._add_projection_listener("tables", None, self.get_table_ids, fn)

    def add_has_table_listener(self, table_id: str, fn: Callable[[bool, bool], None]) -> str:
        return self._add_projection_listener("tables", None, lambda: self.has_table(table_id), fn)

    def add_row_listener(self, table_id: str, row_id: str, fn: Callable[[dict | None], None]) -> str:
        """fn(row) after anything in the row changes; None once deleted."""
        return self._add_listener("row", (table_id, row_id), fn)

    def add_row_ids_listener(self, table_id: str, fn: Callable[[list, list], None]) -> str:
        return self._add_projection_listener("table", table_id, lambda: self.get_row_ids(table_id), fn)

    def add_sorted_row_ids_listener(
        self,
        table_id: str,
        fn: Callable[[list, list], None],
        key: Callable[[str, dict], Any] | None = None,
        reverse: bool = False,
    ) -> str:
        return self._add_projection_listener(
            "table", table_id, lambda: self.get_sorted_row_ids(table_id, key, reverse), fn
        )

    def add_has_row_listener(self, table_id: str, row_id: str, fn: Callable[[bool, bool], None]) -> str:
        return self._add_projection_listener("table", table_id, lambda: self.has_row(table_id, row_id), fn)

    def add_cell_listener(self, table_id: str, row_id: str, cell_id: str, fn: Callable[[Any, Any], None]) -> str:
        """fn(new, old) after the cell is set or deleted."""
        return self._add_listener("cell", (table_id, row_id, cell_id), fn)

    def add_cell_ids_listener(self, table_id: str, row_id: str, fn: Callable[[list, list], None]) -> str:
        return self._add_projection_listener(
            "row", (table_id, row_id), lambda: self.get_cell_ids(table_id, row_id), fn
        )

    def add_table_cell_ids_listener(self, table_id: str, fn: Callable[[dict, dict], None]) -> str:
        return self._add_projection_listener("table", table_id, lambda: self.get_table_cell_ids(table_id), fn)

    def add_has_cell_listener(
        self, table_id: str, row_id: str, cell_id: str, fn: Callable[[bool, bool], None]
    ) -> str:
        return self._add_projection_listener(
            "row", (table_id, row_id), lambda: self.has_cell(table_id, row_id, cell_id), fn
        )

    def add_invalid_value_listener(self, fn: Callable[[str, Any], None]) -> str:
        """fn(value_id, rejected) when a write fails the values schema."""
        return self._add_listener("invalid_value", None, fn)

    def add_invalid_cell_listener(self, fn: Callable[[str, str, str, Any], None]) -> str:
        """fn(table_id, row_id, cell_id, rejected) when a write fails the tables schema."""
        return self._add_listener("invalid_cell", None, fn)

    def del_listener(self, listener_id: str) -> bool:
        """Remove a listener from whichever registry holds it."""
        entry = self._listener_index.pop(listener_id, None)
        if entry is None:
            return False
        scope, key = entry
        registry = self._listeners[scope][key]
        del registry[listener_id]
        if not registry:
            del self._listeners[scope][key]
        return True

    def call_listener(self, listener_id: str) -> None:
        """Invoke a listener now with the current state of its scope."""
        entry = self._listener_index.get(listener_id)
        if entry is None:
            raise KeyError(listener_id)
        scope, key = entry
        fn = self._listeners[scope][key][listener_id]
        if scope == "value":
            current = self.get_value(key)
            fn(current, current)
        elif scope == "cell":
            current = self.get_cell(*key)
            fn(current, current)
        elif scope == "values":
            fn(self.get_values())
        elif scope == "table":
            fn(self.get_table(key))
        elif scope == "tables":
            fn(self.get_tables())
        elif scope == "row":
            fn(self.get_row(*key))
        else:
            raise ValueError(f"{scope} listeners only fire on schema violations")

    def get_listener_stats(self) -> dict[str, int]:
        return {
            scope: sum(len(registry) for registry in self._listeners[scope].values())
            for scope in SCOPES
        }

    def __repr__(self) -> str:
        return f"Store({len(self._values)} values, {len(self._tables)} tables)"


def _changed_keys(old: dict, new: dict) -> list:
    """Keys added, removed, or holding a different value, in first-seen order."""
    keys = list(old) + [k for k in new if k not in old]
    return [k for k in keys if k not in old or k not in new or old[k] != new[k]]
