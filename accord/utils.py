"""Shared utility functions used across Accord modules."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def parse_id_list(value: Any) -> list[int]:
    """Coerce ``"1, 2,3"``, ``[1, "2"]`` or ``None`` into a list of positive ints.

    Blank, zero and non-numeric entries are dropped; order is kept, duplicates removed.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = list(value)
    else:
        parts = [value]
    out: list[int] = []
    for part in parts:
        try:
            num = int(str(part).strip())
        except ValueError:
            continue
        if num > 0 and num not in out:
            out.append(num)
    return out


def utc_now() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without an offset)."""
    return datetime.now(UTC).replace(tzinfo=None)
