# pg_query_sync/ports/swapper.py

from __future__ import annotations

from typing import Any, Protocol

from pg_query_sync.core.models import TableNames


class Swapper(Protocol):
    def swap_sql(self, names: TableNames) -> str: ...
    def swap_tables_atomically(self, cursor: Any, names: TableNames) -> None: ...
