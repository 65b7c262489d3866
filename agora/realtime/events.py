"""
agora.realtime.events — ChangeEvent and row filters
====================================================

A :class:`ChangeEvent` is the envelope for one inserted, updated or deleted
row in a watched table.  Subscribers narrow their interest with a row filter
written as ``column=eq.value`` (e.g. ``discussion_id=eq.42``).
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any

__all__ = ["ChangeEvent", "ChangeOp", "RowFilter", "parse_filter", "ALL_EVENTS"]

ALL_EVENTS = "*"


class ChangeOp(enum.StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One row-level change in a watched table.

    ``row`` holds the new column values, or the deleted values for
    ``DELETE``.  ``origin`` identifies the process that committed the change.
    """

    table: str
    op: ChangeOp
    row: dict[str, Any] = field(default_factory=dict)
    origin: str | None = None

    def to_payload(self, columns: frozenset[str] | None = None) -> str:
        """Serialize to the JSON payload carried by PG NOTIFY."""
        row = self.row
        if columns is not None:
            row = {k: v for k, v in row.items() if k in columns}
        return json.dumps(
            {"table": self.table, "op": str(self.op), "row": row, "origin": self.origin},
            default=str,
        )

    @classmethod
    def from_payload(cls, raw: str) -> ChangeEvent:
        """Parse a NOTIFY payload.  Raises ``ValueError`` on malformed input."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise ValueError(f"Change payload is not JSON: {raw!r}") from exc
        if not isinstance(data, dict) or "table" not in data or "op" not in data:
            raise ValueError(f"Change payload missing table/op: {raw!r}")
        return cls(
            table=str(data["table"]),
            op=ChangeOp(str(data["op"]).upper()),
            row=dict(data.get("row") or {}),
            origin=data.get("origin"),
        )


@dataclass(frozen=True, slots=True)
class RowFilter:
    """Equality filter on a single column."""

    column: str
    value: str

    def matches(self, row: dict[str, Any]) -> bool:
        if self.column not in row:
            return False
        actual = row[self.column]
        return actual is not None and str(actual) == self.value

    def __str__(self) -> str:
        return f"{self.column}=eq.{self.value}"


def parse_filter(text: str | None) -> RowFilter | None:
    """Parse ``column=eq.value``.  ``None``/blank means "every row".

    Raises
    ------
    ValueError
        If *text* is not of the form ``column=eq.value``.
    """
    if text is None or not text.strip():
        return None
    column, sep, rest = text.strip().partition("=")
    if not sep or not column or not rest.startswith("eq."):
        raise ValueError(f"Unsupported filter {text!r}; expected 'column=eq.value'")
    value = rest[len("eq."):]
    if not value:
        raise ValueError(f"Filter {text!r} has an empty value")
    return RowFilter(column=column, value=value)
