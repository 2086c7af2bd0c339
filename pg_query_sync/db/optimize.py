# pg_query_sync/db/optimize.py
from __future__ import annotations

from dataclasses import dataclass
from loguru import logger
from sqlalchemy import text

from pg_query_sync.ports.database import Database
from pg_query_sync.utils.identifiers import qtable


@dataclass(frozen=True)
class PostLoadOptimizer:
    """
    Refreshes planner statistics for a freshly swapped table.

    A renamed-in table starts with no statistics, so the first queries against
    it can plan badly until autovacuum gets to it. Runs after commit, in its own
    transaction; a failure here never undoes the sync.
    """
    db: Database

    def analyze(self, table_name: str) -> None:
        schema = getattr(self.db, "schema", "public")

        with self.db.begin() as conn:
            conn.execute(text(f"ANALYZE {qtable(table_name, schema)}"))

        logger.info(f"ANALYZE completed for <green>{schema}.{table_name}</green>")
