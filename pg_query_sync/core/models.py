# pg_query_sync/core/models.py

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Sequence, Tuple

from pg_query_sync.errors import SchemaError
from pg_query_sync.utils.identifiers import validate_ident


@dataclass(frozen=True)
class ColumnDescriptor:
    """One result-set column: its name and the type name the source declared for it."""
    name: str
    source_type_name: str


@dataclass(frozen=True)
class SyncRequest:
    """Unit of work: one query, one destination table, one atomic replacement."""
    destination_table_name: str
    source_query: str


@dataclass(frozen=True)
class TableNames:
    """
    The three names a sync juggles inside its transaction.

    - live:     the table readers see
    - staging:  `<live>_temp`, receives the new rows
    - retiring: `<live>_drop`, the previous live table while it is being dropped
    """
    live: str
    staging: str
    retiring: str

    @classmethod
    def for_table(cls, live: str) -> "TableNames":
        names = cls(live=live, staging=f"{live}_temp", retiring=f"{live}_drop")
        for name in (names.live, names.staging, names.retiring):
            try:
                validate_ident(name)
            except ValueError as e:
                raise SchemaError(f"Invalid destination table name: {e}", table=live) from e
        return names


@dataclass(frozen=True)
class SyncResult:
    table: str
    rows_loaded: int
    columns: Tuple[ColumnDescriptor, ...]
    elapsed_s: float


class ValueKind(str, Enum):
    NULL = "null"
    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class Value:
    """A single decoded column value tagged with its kind."""
    kind: ValueKind
    raw: Any = None

    def to_copy_text(self) -> Optional[str]:
        """
        Text form understood by PostgreSQL's input functions.
        Returns None for NULL so the COPY encoder can emit its NULL marker.
        """
        if self.kind is ValueKind.NULL:
            return None
        if self.kind is ValueKind.TEXT:
            return self.raw
        if self.kind is ValueKind.INTEGER:
            return str(int(self.raw))
        if self.kind is ValueKind.BOOLEAN:
            return "t" if self.raw else "f"
        if self.kind is ValueKind.FLOAT:
            if isinstance(self.raw, float):
                if math.isnan(self.raw):
                    return "NaN"
                if math.isinf(self.raw):
                    return "Infinity" if self.raw > 0 else "-Infinity"
            return str(self.raw)
        if self.kind is ValueKind.TIMESTAMP:
            if isinstance(self.raw, datetime):
                return self.raw.isoformat(sep=" ")
            return self.raw.isoformat()
        raise ValueError(f"Unhandled value kind: {self.kind!r}")


Row = Tuple[Value, ...]


def decode_value(raw: Any) -> Value:
    """
    Classify a driver value into a tagged Value.
    Raises TypeError for anything that has no destination encoding.
    """
    if raw is None:
        return Value(ValueKind.NULL)
    # bool is a subclass of int, so it has to be checked first
    if isinstance(raw, bool):
        return Value(ValueKind.BOOLEAN, raw)
    if isinstance(raw, int):
        return Value(ValueKind.INTEGER, raw)
    if isinstance(raw, (float, Decimal)):
        return Value(ValueKind.FLOAT, raw)
    if isinstance(raw, (datetime, date, time)):
        return Value(ValueKind.TIMESTAMP, raw)
    if isinstance(raw, str):
        return Value(ValueKind.TEXT, raw)
    if isinstance(raw, (bytes, bytearray, memoryview)):
        try:
            return Value(ValueKind.TEXT, bytes(raw).decode("utf-8"))
        except UnicodeDecodeError as e:
            raise TypeError(f"Binary value is not valid UTF-8: {e}") from e

    raise TypeError(f"Unsupported value type: {type(raw).__name__}")


def decode_row(raw_row: Sequence[Any], width: int) -> Row:
    if len(raw_row) != width:
        raise ValueError(f"Row has {len(raw_row)} values, expected {width}")
    return tuple(decode_value(v) for v in raw_row)
