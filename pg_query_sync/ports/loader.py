# pg_query_sync/ports/loader.py

from typing import Any, Protocol, Sequence

from pg_query_sync.core.models import Row


class BulkLoadChannel(Protocol):
    rows_loaded: int

    def append(self, row: Row) -> None: ...
    def finalize(self) -> None: ...
    def close(self) -> None: ...


class BulkLoader(Protocol):
    def open(self, cursor: Any, table_name: str, columns: Sequence[str]) -> BulkLoadChannel: ...
