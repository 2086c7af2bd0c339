# pg_query_sync/db/source.py

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from loguru import logger

from pg_query_sync.core.cancellation import CancellationToken
from pg_query_sync.core.models import ColumnDescriptor, Row, decode_row
from pg_query_sync.errors import CancellationError, QueryError, ScanError
from pg_query_sync.ports.source import ResultReader, SourceDatabase

# Scratch view used to read SQLite's declared column types; lives in the temp schema
_DESCRIBE_VIEW = "_pg_query_sync_describe"


def source_type_name(type_code: Any) -> str:
    """
    Normalizes the `type_code` slot of a DB-API cursor description.

    Drivers disagree here: apsw reports the declared SQLite type as a string,
    others hand back type objects or OIDs, and Python's sqlite3 reports None.
    """
    if type_code is None:
        return ""
    if isinstance(type_code, str):
        name = type_code
    else:
        name = getattr(type_code, "__name__", None) or str(type_code)
    return name.strip().upper()


def sqlite_declared_types(raw_conn: Any, query: str) -> Optional[List[str]]:
    """
    Declared type of every result column of `query`, in order.

    Python's sqlite3 leaves `cursor.description` untyped, so the query is
    wrapped in a temporary view and read back with `PRAGMA table_info`, the
    same pragma SQLAlchemy's SQLite dialect reflects views with. Columns
    computed by expressions carry whatever type SQLite infers for them
    (often none). Returns None when the query cannot be wrapped in a view;
    executing it then reports the real error.
    """
    body = query.strip().rstrip(";").strip()
    cursor = raw_conn.cursor()
    try:
        try:
            cursor.execute(f'DROP VIEW IF EXISTS temp."{_DESCRIBE_VIEW}"')
            cursor.execute(f'CREATE TEMP VIEW "{_DESCRIBE_VIEW}" AS {body}')
        except Exception as e:
            logger.debug(f"Declared types unavailable, query is not a plain SELECT: {e}")
            return None

        try:
            cursor.execute(f'PRAGMA temp.table_info("{_DESCRIBE_VIEW}")')
            # (cid, name, type, notnull, dflt_value, pk)
            return [str(info[2] or "") for info in sorted(cursor.fetchall(), key=lambda info: info[0])]
        finally:
            cursor.execute(f'DROP VIEW IF EXISTS temp."{_DESCRIBE_VIEW}"')
    finally:
        cursor.close()


def postgres_type_names(raw_conn: Any, type_codes: Sequence[Any]) -> Dict[Any, str]:
    """
    Resolves psycopg2 type OIDs to SQL type names via `format_type`
    ("integer", "text", "timestamp with time zone", ...).
    """
    oids = sorted({code for code in type_codes if isinstance(code, int)})
    if not oids:
        return {}

    cursor = raw_conn.cursor()
    try:
        cursor.execute(
            "SELECT oid::bigint, format_type(oid, NULL) FROM pg_catalog.pg_type WHERE oid = ANY(%s::oid[])",
            (oids,),
        )
        return {oid: name for oid, name in cursor.fetchall()}
    finally:
        cursor.close()


def _dialect_name(source: Any) -> Optional[str]:
    return getattr(source, "dialect_name", None)


def _interrupt_hook(raw_conn: Any) -> Optional[Callable[[], None]]:
    # sqlite3 exposes interrupt(), psycopg2 exposes cancel()
    for attr in ("interrupt", "cancel"):
        hook = getattr(raw_conn, attr, None)
        if callable(hook):
            return hook
    return None


@dataclass(frozen=True)
class SqlResultSet:
    columns: Tuple[ColumnDescriptor, ...]
    rows: Iterator[Row]


@dataclass(frozen=True)
class SqlResultReader(ResultReader):
    """
    Runs a read query on the source database and streams typed rows.

    Column type names are the source's declared types where the driver can
    tell: SQLite declared types, PostgreSQL type names, or whatever string
    the driver puts in `cursor.description`.

    The DB-API connection and cursor are held only for the lifetime of `open()`
    and released on every exit path, including errors and cancellation.
    """
    source: SourceDatabase

    @contextmanager
    def open(self, query: str, cancel: CancellationToken) -> Iterator[SqlResultSet]:
        cancel.raise_if_cancelled("source query")

        try:
            raw_conn = self.source.raw_connection()
        except Exception as e:
            raise QueryError(f"Could not connect to source: {e}") from e

        dialect = _dialect_name(self.source)

        try:
            with cancel.on_cancel(_interrupt_hook(raw_conn)):
                try:
                    declared = sqlite_declared_types(raw_conn, query) if dialect == "sqlite" else None
                except Exception as e:
                    if cancel.cancelled:
                        raise CancellationError(f"Source query interrupted: {e}") from e
                    raise QueryError(f"Could not describe source query: {e}") from e
                cancel.raise_if_cancelled("source query")

                cursor = raw_conn.cursor()
                try:
                    try:
                        cursor.execute(query)
                    except Exception as e:
                        if cancel.cancelled:
                            raise CancellationError(f"Source query interrupted: {e}") from e
                        raise QueryError(f"Source query failed: {e}") from e

                    if cursor.description is None:
                        raise QueryError("Source query did not return a result set")

                    columns = self._describe(raw_conn, cursor.description, declared, dialect)
                    logger.debug(f"Source columns: {[(c.name, c.source_type_name) for c in columns]}")

                    yield SqlResultSet(columns=columns, rows=self._iter_rows(cursor, len(columns), cancel))
                finally:
                    cursor.close()
        finally:
            raw_conn.close()

    @staticmethod
    def _describe(
            raw_conn: Any,
            description: Sequence[Sequence[Any]],
            declared: Optional[List[str]],
            dialect: Optional[str],
    ) -> Tuple[ColumnDescriptor, ...]:
        type_codes = [desc[1] for desc in description]

        if declared is None and dialect == "postgresql":
            try:
                names = postgres_type_names(raw_conn, type_codes)
            except Exception as e:
                logger.warning(f"Could not resolve source type names, columns fall back to text: {e}")
                names = {}
            declared = [names.get(code, "") for code in type_codes]

        if declared is None or len(declared) != len(description):
            declared = [source_type_name(code) for code in type_codes]

        return tuple(
            ColumnDescriptor(name=str(desc[0]), source_type_name=type_name.strip().upper())
            for desc, type_name in zip(description, declared)
        )

    @staticmethod
    def _iter_rows(cursor: Any, width: int, cancel: CancellationToken) -> Iterator[Row]:
        while True:
            cancel.raise_if_cancelled("source fetch")

            try:
                raw_row = cursor.fetchone()
            except Exception as e:
                if cancel.cancelled:
                    raise CancellationError(f"Source fetch interrupted: {e}") from e
                raise ScanError(f"Failed to fetch source row: {e}") from e

            if raw_row is None:
                return

            try:
                row = decode_row(raw_row, width)
            except (TypeError, ValueError) as e:
                raise ScanError(f"Failed to decode source row: {e}") from e

            yield row
