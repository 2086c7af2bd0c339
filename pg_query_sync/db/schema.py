# pg_query_sync/db/schema.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from loguru import logger

from pg_query_sync.core.models import ColumnDescriptor
from pg_query_sync.errors import TemplateError
from pg_query_sync.ports.schema import SchemaManager
from pg_query_sync.utils.identifiers import qident, qtable

# Source type names are compared upper-cased (see `source_type_to_pg`)
_SOURCE_TYPE_TO_PG: Mapping[str, str] = {
    "TEXT": "text",
    "INT": "integer",
    "INTEGER": "integer",
    "DATETIME": "timestamp with time zone",
    "BOOLEAN": "boolean",
}

FALLBACK_PG_TYPE = "text"


def source_type_to_pg(source_type_name: str) -> str:
    """
    Maps a source column type name to a PostgreSQL column type.

    Expressions usually carry no declared type (empty name); those and any
    unrecognized name land on `text` so the sync never fails on type mapping.
    """
    key = (source_type_name or "").strip().upper()
    pg_type = _SOURCE_TYPE_TO_PG.get(key)
    if pg_type is None:
        logger.debug(f"Source type fallback to {FALLBACK_PG_TYPE}: {source_type_name!r}")
        return FALLBACK_PG_TYPE
    return pg_type


def render_create_table(
        table_name: str,
        columns: Sequence[ColumnDescriptor],
        schema: Optional[str] = None,
) -> str:
    """
    Renders `CREATE TABLE` for the given columns, in order.

    Pure: same input, same text. Raises TemplateError only when an identifier
    cannot be rendered at all (non-string name, NUL byte).
    """
    try:
        cols_sql = [
            f"    {qident(col.name)} {source_type_to_pg(col.source_type_name)}"
            for col in columns
        ]
        target = qtable(table_name, schema)
    except (TypeError, ValueError, AttributeError) as e:
        raise TemplateError(f"Cannot render CREATE TABLE for {table_name!r}: {e}", table=table_name) from e

    body = ",\n".join(cols_sql)
    return f"CREATE TABLE {target} (\n{body}\n)"


@dataclass(frozen=True)
class PostgresSchemaManager(SchemaManager):
    """
    Creates the staging table inside the caller's open transaction.

    Any leftover table under the staging name is dropped first; since it runs
    in the same transaction, a failed sync rolls the drop back as well.
    """
    schema: Optional[str] = None

    def render(self, staging_table: str, columns: Sequence[ColumnDescriptor]) -> str:
        return render_create_table(staging_table, columns, schema=self.schema)

    def recreate_staging(self, cursor: Any, staging_table: str, columns: Sequence[ColumnDescriptor]) -> str:
        ddl = self.render(staging_table, columns)

        cursor.execute(f"DROP TABLE IF EXISTS {qtable(staging_table, self.schema)}")
        cursor.execute(ddl)

        logger.info(f"Created staging <green>{staging_table}</green> with {len(columns)} columns")
        logger.debug(f"Staging DDL:\n{ddl}")
        return ddl
