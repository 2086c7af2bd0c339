# pg_query_sync/ports/source.py

from __future__ import annotations

from typing import Any, ContextManager, Iterator, Protocol, Tuple

from pg_query_sync.core.cancellation import CancellationToken
from pg_query_sync.core.models import ColumnDescriptor, Row


class SourceDatabase(Protocol):
    # SQLAlchemy Engine satisfies this; the result is a PEP 249 connection.
    # An optional `dialect_name` ("sqlite", "postgresql") enables declared-type lookup.
    def raw_connection(self) -> Any: ...


class ResultSet(Protocol):
    columns: Tuple[ColumnDescriptor, ...]
    rows: Iterator[Row]


class ResultReader(Protocol):
    def open(self, query: str, cancel: CancellationToken) -> ContextManager[ResultSet]: ...
