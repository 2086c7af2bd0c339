# pg_query_sync/db/loader_copy.py

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from loguru import logger

from pg_query_sync.core.models import Row
from pg_query_sync.ports.loader import BulkLoadChannel, BulkLoader
from pg_query_sync.utils.identifiers import qident, qtable


def encode_copy_line(row: Row) -> str:
    """
    Encodes one row for `COPY ... (FORMAT csv, NULL '')`.

    NULL is the unquoted empty field; every other value is quoted, so an empty
    string stays an empty string.
    """
    fields: List[str] = []
    for value in row:
        text = value.to_copy_text()
        if text is None:
            fields.append("")
        else:
            fields.append('"' + text.replace('"', '""') + '"')
    return ",".join(fields) + "\n"


class PostgresCopyChannel(BulkLoadChannel):
    """
    Streams rows into a table with COPY FROM STDIN on the caller's cursor.

    Rows are encoded as they arrive and flushed every `batch_size` rows, so
    memory is bounded by the batch, never by the result set. All flushes run on
    the same connection and therefore inside the caller's transaction.
    """

    def __init__(
            self,
            cursor: Any,
            table_name: str,
            columns: Sequence[str],
            *,
            schema: Optional[str] = None,
            batch_size: int = 10_000,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got={batch_size}")
        if not columns:
            raise ValueError("COPY needs at least one column")

        self.cursor = cursor
        self.table_name = table_name
        self.columns = tuple(columns)
        self.batch_size = batch_size
        self.rows_loaded = 0

        col_list_sql = ", ".join(qident(c) for c in self.columns)
        self.copy_sql = (
            f"COPY {qtable(table_name, schema)} ({col_list_sql}) "
            "FROM STDIN WITH (FORMAT csv, HEADER false, NULL '', DELIMITER ',')"
        )

        self._buffer = io.StringIO()
        self._pending = 0
        self._finalized = False
        self._closed = False

    def append(self, row: Row) -> None:
        if self._finalized or self._closed:
            raise RuntimeError(f"COPY channel for {self.table_name} is no longer accepting rows")
        if len(row) != len(self.columns):
            raise ValueError(f"Row has {len(row)} values, channel expects {len(self.columns)}")

        self._buffer.write(encode_copy_line(row))
        self._pending += 1

        if self._pending >= self.batch_size:
            self._flush()

    def _flush(self) -> None:
        if not self._pending:
            return

        self._buffer.seek(0)
        self.cursor.copy_expert(self.copy_sql, self._buffer)

        self.rows_loaded += self._pending
        logger.debug(f"COPY flushed {self._pending} rows into {self.table_name} (total={self.rows_loaded})")

        self._buffer = io.StringIO()
        self._pending = 0

    def finalize(self) -> None:
        """Flushes the last partial batch; no more rows are accepted afterwards."""
        if self._finalized:
            return
        self._flush()
        self._finalized = True

    def close(self) -> None:
        # Rows not yet flushed are discarded; close() without finalize() is an abort
        if self._closed:
            return
        if self._pending:
            logger.debug(f"Discarding {self._pending} unflushed rows for {self.table_name}")
        self._buffer = io.StringIO()
        self._pending = 0
        self._closed = True

    def __enter__(self) -> "PostgresCopyChannel":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


@dataclass(frozen=True)
class PostgresCopyLoader(BulkLoader):
    schema: Optional[str] = None
    batch_size: int = 10_000

    def open(self, cursor: Any, table_name: str, columns: Sequence[str]) -> PostgresCopyChannel:
        return PostgresCopyChannel(
            cursor,
            table_name,
            columns,
            schema=self.schema,
            batch_size=self.batch_size,
        )
