# pg_query_sync/core/sync_pipeline.py

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from time import time
from typing import TYPE_CHECKING, Any, Iterator, Optional, Type

from loguru import logger

from pg_query_sync.core.cancellation import CancellationToken
from pg_query_sync.core.models import SyncRequest, SyncResult, TableNames
from pg_query_sync.db.loader_copy import PostgresCopyLoader
from pg_query_sync.db.schema import PostgresSchemaManager
from pg_query_sync.db.source import SqlResultReader
from pg_query_sync.db.swapper import AtomicSwapper
from pg_query_sync.errors import (
    CancellationError,
    CommitError,
    LoadError,
    SchemaError,
    SwapError,
    SyncError,
)
from pg_query_sync.utils.progress import progress_enable, track

if TYPE_CHECKING:
    # Imported only for type hints.
    # This avoids circular imports at runtime.
    from pg_query_sync.ports.database import Database
    from pg_query_sync.ports.loader import BulkLoader
    from pg_query_sync.ports.schema import SchemaManager
    from pg_query_sync.ports.source import ResultReader, ResultSet, SourceDatabase
    from pg_query_sync.ports.swapper import Swapper


# Snapshot isolation for the whole replace; the renames rely on transactional DDL
ISOLATION_LEVEL = "REPEATABLE READ"

# Heartbeat interval (rows) when progress bars are disabled
_HEARTBEAT_ROWS = 100_000


@contextmanager
def _stage(error_cls: Type[SyncError], message: str, cancel: CancellationToken, table: str) -> Iterator[None]:
    """Translates driver errors raised inside one sync step into the step's error type."""
    try:
        yield
    except SyncError:
        raise
    except Exception as e:
        # a driver error caused by our own cancel() hook is a cancellation, not a failure
        if cancel.cancelled:
            raise CancellationError(f"{message}: interrupted by cancellation ({e})", table=table) from e
        raise error_cls(f"{message}: {e}", table=table) from e


@dataclass(frozen=True)
class SwapSyncPipeline:
    # Destination database; the pipeline borrows one pooled connection per sync
    db: Database

    # Executes the source query and streams typed rows
    reader: ResultReader

    # Renders and creates the staging table
    schema: SchemaManager

    # Opens the COPY channel into the staging table
    loader: BulkLoader

    # Renames staging over live inside the transaction
    swapper: Swapper

    @classmethod
    def for_postgres(
            cls,
            db: Database,
            source: SourceDatabase,
            *,
            batch_size: int = 10_000,
    ) -> "SwapSyncPipeline":
        """Wire the default PostgreSQL strategies, all scoped to the client's schema."""
        schema = getattr(db, "schema", None)
        return cls(
            db=db,
            reader=SqlResultReader(source),
            schema=PostgresSchemaManager(schema=schema),
            loader=PostgresCopyLoader(schema=schema, batch_size=batch_size),
            swapper=AtomicSwapper(schema=schema),
        )

    def sync(self, request: SyncRequest, cancel: Optional[CancellationToken] = None) -> SyncResult:
        """
        Replaces `request.destination_table_name` with the result of `request.source_query`.

        Either the whole replacement commits or the destination is left exactly
        as it was. Raises a SyncError subclass describing the failed step.
        """
        cancel = cancel or CancellationToken()
        names = TableNames.for_table(request.destination_table_name)
        table = names.live

        start = time()
        logger.info(f"Sync start: <green>{table}</green>")

        try:
            cancel.raise_if_cancelled("source query", table=table)

            # A failing source query never reaches the destination
            with self.reader.open(request.source_query, cancel) as result:
                rows_loaded = self._replace_table(names, result, cancel)
                columns = tuple(result.columns)

        except SyncError as e:
            if e.table is None:
                e.table = table
            logger.debug(f"Sync failed for {table}: {type(e).__name__}: {e}")
            raise

        elapsed = time() - start
        logger.success(
            f"Sync completed: <green>{table}</green> rows={rows_loaded} in <green>{elapsed:.2f}</green>s"
        )
        return SyncResult(table=table, rows_loaded=rows_loaded, columns=columns, elapsed_s=elapsed)

    def _replace_table(self, names: TableNames, result: ResultSet, cancel: CancellationToken) -> int:
        table = names.live

        with ExitStack() as stack:
            with _stage(SchemaError, "Failed to begin destination transaction", cancel, table):
                conn = stack.enter_context(self.db.connect())
                conn = conn.execution_options(isolation_level=ISOLATION_LEVEL)
                trans = conn.begin()

            try:
                # DDL, COPY and the swap all run on the DB-API connection behind `conn`,
                # i.e. inside `trans`
                dbapi_conn = conn.connection.dbapi_connection
                with cancel.on_cancel(getattr(dbapi_conn, "cancel", None)):
                    cursor = conn.connection.cursor()
                    try:
                        rows_loaded = self._run_steps(cursor, names, result, cancel)
                    finally:
                        cursor.close()

                    cancel.raise_if_cancelled("commit", table=table)
                    with _stage(CommitError, "Failed to commit", cancel, table):
                        trans.commit()

            except BaseException:
                self._rollback(trans, table)
                raise

        return rows_loaded

    def _run_steps(self, cursor: Any, names: TableNames, result: ResultSet, cancel: CancellationToken) -> int:
        table = names.live

        # StagingCreated
        cancel.raise_if_cancelled("staging DDL", table=table)
        with _stage(SchemaError, f"Failed to create staging table {names.staging}", cancel, table):
            self.schema.recreate_staging(cursor, names.staging, result.columns)

        # Loading -> LoadComplete
        rows_loaded = self._load(cursor, names, result, cancel)

        # Swapped
        cancel.raise_if_cancelled("swap", table=table)
        with _stage(SwapError, f"Failed to swap {names.staging} -> {names.live}", cancel, table):
            self.swapper.swap_tables_atomically(cursor, names)

        return rows_loaded

    def _load(self, cursor: Any, names: TableNames, result: ResultSet, cancel: CancellationToken) -> int:
        table = names.live
        column_names = [c.name for c in result.columns]

        with _stage(LoadError, f"Failed to open COPY into {names.staging}", cancel, table):
            channel = self.loader.open(cursor, names.staging, column_names)

        try:
            appended = 0
            with track(total=None, desc=f"Loading {table}") as tracker:
                # the reader checks cancellation before each fetch; this one guards each load
                for row in result.rows:
                    cancel.raise_if_cancelled("row load", table=table)

                    with _stage(LoadError, f"Failed to load row {appended + 1} into {names.staging}", cancel, table):
                        channel.append(row)

                    appended += 1
                    tracker.update(1)

                    # Heartbeat logging for non-interactive logs (e.g., Docker/CI)
                    if appended % _HEARTBEAT_ROWS == 0 and not progress_enable():
                        logger.info(f"Loaded {appended} rows into {names.staging}...")

            cancel.raise_if_cancelled("COPY finalize", table=table)
            with _stage(LoadError, f"Failed to finalize COPY into {names.staging}", cancel, table):
                channel.finalize()
        finally:
            channel.close()

        logger.info(f"Loaded <green>{channel.rows_loaded}</green> rows into staging {names.staging}")
        return channel.rows_loaded

    @staticmethod
    def _rollback(trans: Any, table: str) -> None:
        # Never masks the error that triggered it
        try:
            trans.rollback()
            logger.warning(f"Transaction rolled back; {table} left unchanged")
        except Exception as e:
            logger.opt(exception=e).error(f"Rollback failed for {table}: {e}")


def sync(
        cancel: Optional[CancellationToken],
        request: SyncRequest,
        *,
        destination: Database,
        source: SourceDatabase,
        batch_size: int = 10_000,
) -> SyncResult:
    """One-shot form of `SwapSyncPipeline.sync` for callers that hold two connections."""
    pipeline = SwapSyncPipeline.for_postgres(destination, source, batch_size=batch_size)
    return pipeline.sync(request, cancel)
