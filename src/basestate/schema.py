"""Store schemas — per-key type and default constraints.

A field schema is a dict {"type": name, "default": value}; "default" is
optional. Keys without a field schema accept anything. A value whose type does
not match is replaced by the default when the default itself matches, and
dropped otherwise. Missing keys are filled from the default.
"""

from __future__ import annotations

import copy
from typing import Any, Callable

MISSING: Any = object()


class SchemaError(ValueError):
    """Raised when a schema itself is malformed."""


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


TYPE_CHECKS: dict[str, Callable[[object], bool]] = {
    "number": _is_number,
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
    "null": lambda v: v is None,
}


def matches(type_name: str, value: object) -> bool:
    return value is not MISSING and TYPE_CHECKS[type_name](value)


def _field(field_id: str, spec: object) -> dict:
    if not isinstance(spec, dict) or "type" not in spec:
        raise SchemaError(f"schema for {field_id!r} must be a dict with a 'type' key")
    if spec["type"] not in TYPE_CHECKS:
        known = ", ".join(sorted(TYPE_CHECKS))
        raise SchemaError(f"unknown type {spec['type']!r} for {field_id!r} (expected one of {known})")
    field = {"type": spec["type"]}
    if "default" in spec:
        field["default"] = spec["default"]
    return field


def values_schema(schema: dict) -> dict[str, dict]:
    """Validate and copy a values schema: {value_id: field}."""
    return {value_id: _field(value_id, spec) for value_id, spec in schema.items()}


def tables_schema(schema: dict) -> dict[str, dict[str, dict]]:
    """Validate and copy a tables schema: {table_id: {cell_id: field}}."""
    result = {}
    for table_id, cells in schema.items():
        if not isinstance(cells, dict):
            raise SchemaError(f"schema for table {table_id!r} must be a dict of cell schemas")
        result[table_id] = {
            cell_id: _field(f"{table_id}.{cell_id}", spec) for cell_id, spec in cells.items()
        }
    return result


def coerce(field: dict | None, value: object) -> object:
    """Return value, the field default, or MISSING if neither fits."""
    if field is None:
        return value
    if matches(field["type"], value):
        return value
    default = field.get("default", MISSING)
    if matches(field["type"], default):
        return copy.deepcopy(default)
    return MISSING


def enforce(schema: dict[str, dict], data: dict) -> tuple[dict, list[tuple[str, object]]]:
    """Apply schema to a flat mapping.

    Returns the accepted mapping and the (key, value) pairs that failed their
    type check.
    """
    result = {}
    rejected = []
    for key, value in data.items():
        field = schema.get(key)
        if field is not None and not matches(field["type"], value):
            rejected.append((key, value))
        accepted = coerce(field, value)
        if accepted is not MISSING:
            result[key] = accepted
    for key, field in schema.items():
        if key not in data:
            default = coerce(field, MISSING)
            if default is not MISSING:
                result[key] = default
    return result, rejected
