# pg_query_sync/ports/schema.py

from __future__ import annotations

from typing import Any, Protocol, Sequence

from pg_query_sync.core.models import ColumnDescriptor


class SchemaManager(Protocol):
    def render(
            self,
            staging_table: str,
            columns: Sequence[ColumnDescriptor]
    ) -> str: ...

    def recreate_staging(
            self,
            cursor: Any,
            staging_table: str,
            columns: Sequence[ColumnDescriptor]
    ) -> str: ...
