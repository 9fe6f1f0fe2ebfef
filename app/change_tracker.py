"""Field-level change tracking between a baseline snapshot and a working copy.

Comparison rules:

* Fields are visited in the iteration order of the working copy; a field the
  baseline lacks is compared against ``None``.
* ``None`` and ``""`` are the same "empty" value, so clearing a text box that
  was never filled in is not reported as a change.
* Lists, tuples and dicts compare by their sorted-key JSON form, so a reordered
  dict is unchanged while a reordered list is a change.
* Booleans never equal numbers (``True`` vs ``1`` is a change).
* Everything else compares with ``==`` (dates by value, ``1 == 1.0``).
"""

from __future__ import annotations

import dataclasses
import datetime
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

EMPTY_DISPLAY = "—"


@dataclass(frozen=True)
class FieldChange:
    field: str
    label: str
    old_value: Any
    new_value: Any
    type: str = "string"


@dataclass(frozen=True)
class ChangeSet:
    changes: Tuple[FieldChange, ...] = ()

    @property
    def change_count(self) -> int:
        return len(self.changes)

    @property
    def has_changes(self) -> bool:
        return self.change_count > 0

    @property
    def modified_fields(self) -> List[str]:
        return [change.field for change in self.changes]

    def get(self, field: str) -> Optional[FieldChange]:
        for change in self.changes:
            if change.field == field:
                return change
        return None


EMPTY_CHANGE_SET = ChangeSet()


def _as_mapping(snapshot: Any) -> Mapping[str, Any]:
    if snapshot is None:
        return {}
    if isinstance(snapshot, Mapping):
        return snapshot
    if dataclasses.is_dataclass(snapshot) and not isinstance(snapshot, type):
        return {field.name: getattr(snapshot, field.name) for field in dataclasses.fields(snapshot)}
    raise TypeError(f"Cannot track changes on {type(snapshot).__name__}; expected a mapping or dataclass")


def _normalize_empty(value: Any) -> Any:
    return None if value == "" else value


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def has_value_changed(old_value: Any, new_value: Any) -> bool:
    old_value = _normalize_empty(old_value)
    new_value = _normalize_empty(new_value)
    if old_value is None and new_value is None:
        return False
    if old_value is None or new_value is None:
        return True
    if isinstance(old_value, bool) or isinstance(new_value, bool):
        return type(old_value) is not type(new_value) or old_value != new_value
    containers = (list, tuple, dict)
    if isinstance(old_value, containers) or isinstance(new_value, containers):
        return _serialize(old_value) != _serialize(new_value)
    return old_value != new_value


def value_type(value: Any) -> str:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return "date"
    if isinstance(value, (list, tuple, set)):
        return "array"
    if value is None or isinstance(value, str):
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "object"


def format_field_name(field: str) -> str:
    """``baseSalary`` / ``base_salary`` -> ``Base Salary``."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", field).replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


def _changed_fields(
    baseline: Any,
    working: Any,
    ignore: Iterable[str],
) -> Iterable[Tuple[str, Any, Any]]:
    original = _as_mapping(baseline)
    current = _as_mapping(working)
    skipped = set(ignore or ())
    for field, new_value in current.items():
        if field in skipped:
            continue
        old_value = original.get(field)
        if has_value_changed(old_value, new_value):
            yield field, old_value, new_value


def track_changes(
    baseline: Any,
    working: Any,
    labels: Optional[Mapping[str, str]] = None,
    ignore: Iterable[str] = (),
) -> ChangeSet:
    labels = labels or {}
    changes = tuple(
        FieldChange(
            field=field,
            label=labels.get(field) or format_field_name(field),
            old_value=old_value,
            new_value=new_value,
            type=value_type(new_value if new_value is not None else old_value),
        )
        for field, old_value, new_value in _changed_fields(baseline, working, ignore)
    )
    return ChangeSet(changes)


def generate_patch(baseline: Any, working: Any, ignore: Iterable[str] = ()) -> Dict[str, Any]:
    """Changed field -> new value; an empty dict when nothing changed."""
    return {field: new_value for field, _, new_value in _changed_fields(baseline, working, ignore)}


def format_value(value: Any, type_: Optional[str] = None) -> str:
    if value is None or value == "":
        return EMPTY_DISPLAY
    type_ = type_ or value_type(value)
    if type_ == "date":
        if isinstance(value, (datetime.date, datetime.datetime)):
            return value.strftime("%Y-%m-%d")
        return str(value)
    if type_ == "boolean":
        return "Yes" if value else "No"
    if type_ == "array":
        if isinstance(value, (list, tuple, set)):
            return ", ".join(str(item) for item in value)
        return str(value)
    if type_ == "object":
        return json.dumps(value, indent=2, sort_keys=True, default=str)
    return str(value)
