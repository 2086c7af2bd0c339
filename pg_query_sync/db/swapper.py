# pg_query_sync/db/swapper.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from pg_query_sync.core.models import TableNames
from pg_query_sync.ports.swapper import Swapper
from pg_query_sync.utils.identifiers import qident, qtable


@dataclass(frozen=True)
class AtomicSwapper(Swapper):
    """
    Promotes the staging table over the live one with renames.

    Runs inside the caller's transaction and does not commit: nothing becomes
    visible to other sessions until the sync commits.
    """
    schema: Optional[str] = None

    def swap_sql(self, names: TableNames) -> str:
        fq_live = qtable(names.live, self.schema)
        fq_staging = qtable(names.staging, self.schema)
        fq_retiring = qtable(names.retiring, self.schema)

        # RENAME TO takes a bare name; the table stays in its schema
        return ";\n".join([
            # cleanup any leftover retiring table
            f"DROP TABLE IF EXISTS {fq_retiring}",
            f"ALTER TABLE IF EXISTS {fq_live} RENAME TO {qident(names.retiring)}",
            f"ALTER TABLE {fq_staging} RENAME TO {qident(names.live)}",
            f"DROP TABLE IF EXISTS {fq_retiring}",
        ]) + ";"

    def swap_tables_atomically(self, cursor: Any, names: TableNames) -> None:
        logger.info(
            f"Swapping: staging=<green>{names.staging}</green> -> live=<green>{names.live}</green>"
        )
        cursor.execute(self.swap_sql(names))
