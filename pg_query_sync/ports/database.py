# pg_query_sync/ports/database.py

from __future__ import annotations

from typing import Protocol, ContextManager


from sqlalchemy.engine import Engine, Connection


class Database(Protocol):
    engine: Engine
    schema: str

    def table_exists(self, table: str) -> bool: ...

    def begin(self) -> ContextManager[Connection]: ...
    def connect(self) -> ContextManager[Connection]: ...
