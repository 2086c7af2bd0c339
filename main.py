# main.py

from __future__ import annotations

import os
import signal
import sys
from contextlib import nullcontext
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from loguru import logger

# Import internal project components
from pg_query_sync.config import build_paths, configure_logging, load_sync_settings
from pg_query_sync.core.cancellation import CancellationToken
from pg_query_sync.core.models import SyncRequest, TableNames
from pg_query_sync.core.sync_pipeline import SwapSyncPipeline
from pg_query_sync.db.client import PostgresClient, SourceClient
from pg_query_sync.db.lock import AdvisoryLock, sync_lock_key
from pg_query_sync.db.optimize import PostLoadOptimizer
from pg_query_sync.db.schema import render_create_table
from pg_query_sync.db.source import SqlResultReader
from pg_query_sync.errors import CancellationError, SyncError

# --- 1. Environment Setup ---
# Load .env from the same folder as main.py for local development
ENV_PATH = Path(__file__).resolve().parent / ".env"

# Allow system environment variables (Docker/cron) to override .env
load_dotenv(dotenv_path=ENV_PATH, override=False)

# Conventional exit status for SIGINT-style termination
EXIT_CANCELLED = 130


# --- 2. Helper Functions ---

def env_default(name: str, default: str | None = None) -> str | None:
    """Retrieve env var, returning default if None or empty."""
    val = os.getenv(name)
    return val if val not in (None, "") else default


def env_int(name: str, default: int) -> int:
    """Safely parse integer from env var."""
    val = env_default(name)
    if val is None:
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def resolve_query(query: Optional[str], query_file: Optional[Path]) -> str:
    """Exactly one of --query / --query-file must be given."""
    if query and query_file:
        raise click.UsageError("Use either --query or --query-file, not both.")
    if query_file:
        query = query_file.read_text(encoding="utf-8")
    if not query or not query.strip():
        raise click.UsageError("A source query is required (--query, --query-file or SOURCE_QUERY).")
    return query


def install_signal_handlers(cancel: CancellationToken) -> None:
    """SIGINT / SIGTERM cancel the running sync; it then rolls back and exits."""
    def _handler(signum, _frame) -> None:
        cancel.cancel(reason=f"received {signal.Signals(signum).name}")

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# --- 3. Dependency Injection Builders ---

def build_pg_client() -> PostgresClient:
    """Initialize the destination Postgres client using environment variables."""
    db_host = env_default("DB_HOST", "localhost")
    db_port = env_int("DB_PORT", 5432)
    db_user = env_default("DB_USER", "postgres")
    db_password = env_default("DB_PASSWORD", "postgres")
    db_name = env_default("DB_NAME", "postgres")
    db_schema = env_default("DB_SCHEMA", "public")

    logger.info(f"Target DB: {db_host}:{db_port}/{db_name} (User: {db_user}, Schema: {db_schema})")

    return PostgresClient.from_params(
        user=str(db_user),
        password=str(db_password),
        host=str(db_host),
        port=db_port,
        db=str(db_name),
        schema=str(db_schema),
    )


def build_source_client(source_url: Optional[str]) -> SourceClient:
    if not source_url:
        raise click.UsageError("A source database is required (--source-url or SOURCE_URL).")
    return SourceClient.from_url(source_url)


# --- 4. Main CLI Commands ---

# Configure context to allow wider help text formatting
CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'], max_content_width=120)


@click.group(context_settings=CONTEXT_SETTINGS)
def cli() -> None:
    """
    QUERY -> POSTGRES TABLE SYNC TOOL

    Runs a read query on a source database and atomically replaces a
    PostgreSQL table with its result. Readers see either the old table
    or the new one, never a partial load.

    \b
    KEY FEATURES:
    - Streaming: rows flow through COPY FROM STDIN, never held in memory.
    - Atomic Swaps: staging table renamed over the live one in one transaction.
    - Cancellable: Ctrl-C or --timeout rolls back cleanly.
    - Configurable: Controlled via CLI flags or Environment Variables.

    \b
    USAGE EXAMPLES:
    1. Sync a query from a SQLite file:
       $ python main.py sync --source-url sqlite:///repo.db --table commits \\
             --query "SELECT hash, author_name, author_when FROM commits"

    2. Using Environment Variables:
       $ export SOURCE_URL=sqlite:///repo.db SYNC_TABLE=commits SOURCE_QUERY="SELECT * FROM commits"
       $ python main.py sync
    """
    # Setup logging configuration on CLI start
    paths = build_paths()
    configure_logging(paths)


@cli.command("sync", help="Replace a Postgres table with the result of a source query.")
@click.option("--table", "table_name", default=lambda: env_default("SYNC_TABLE"), required=True,
              help="Destination table name (created or replaced).")
@click.option("--query", default=lambda: env_default("SOURCE_QUERY"),
              help="Source query to run.")
@click.option("--query-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="Read the source query from a file.")
@click.option("--source-url", default=lambda: env_default("SOURCE_URL"),
              help="SQLAlchemy URL of the source database.")
@click.option("--timeout", "timeout_s", type=float, default=None,
              help="Cancel (and roll back) if the sync runs longer than this many seconds.")
@click.option("--lock/--no-lock", "use_lock",
              default=lambda: (env_default("SYNC_LOCK", "true") or "true").lower() in {"1", "true", "yes", "on"},
              show_default=True, help="Serialize syncs of the same table with a Postgres advisory lock.")
@click.option("--analyze/--no-analyze", default=False, show_default=True,
              help="Run ANALYZE on the table after a successful sync.")
def sync_cmd(
        table_name: str,
        query: Optional[str],
        query_file: Optional[Path],
        source_url: Optional[str],
        timeout_s: Optional[float],
        use_lock: bool,
        analyze: bool,
) -> None:
    """
    Executes one sync.

    1. Resolves the query and connects to both databases.
    2. Optionally takes the per-table advisory lock.
    3. Runs the pipeline (Query -> Staging -> COPY -> Swap -> Commit).
    """
    query = resolve_query(query, query_file)
    settings = load_sync_settings()

    cancel = CancellationToken.with_timeout(timeout_s) if timeout_s else CancellationToken()
    install_signal_handlers(cancel)

    logger.info("-" * 50)
    logger.info(f"SYNC START: {table_name}")
    logger.info(f"Batch    : {settings.batch_size} rows per COPY")
    logger.info(f"Timeout  : {timeout_s or 'none'}")
    logger.info("-" * 50)

    source = None
    try:
        with cancel:
            source = build_source_client(source_url)
            pg_client = build_pg_client()

            if pg_client.table_exists(table_name):
                logger.info("Table exists. It will be replaced by an Atomic Swap (Staging -> Live).")

            pipeline = SwapSyncPipeline.for_postgres(pg_client, source, batch_size=settings.batch_size)
            lock = AdvisoryLock(pg_client, timeout_s=settings.lock_timeout_s)
            guard = lock.acquire(sync_lock_key(pg_client.schema, table_name), cancel) if use_lock else nullcontext()

            with guard:
                result = pipeline.sync(SyncRequest(destination_table_name=table_name, source_query=query), cancel)

            if analyze:
                PostLoadOptimizer(pg_client).analyze(table_name)

        logger.success(f"Job Completed: {pg_client.schema}.{result.table} ({result.rows_loaded} rows)")

    except CancellationError as error:
        logger.warning(f"Sync cancelled, destination unchanged: {error}")
        sys.exit(EXIT_CANCELLED)
    except click.UsageError:
        raise
    except SyncError as error:
        logger.error(f"Sync Failed ({type(error).__name__}): {error}")
        sys.exit(1)
    except Exception as error:
        logger.exception(f"Sync Failed: {error}")
        sys.exit(1)
    finally:
        if source is not None:
            source.dispose()


@cli.command("render-ddl", help="Print the staging DDL a sync would run, without touching Postgres.")
@click.option("--table", "table_name", default=lambda: env_default("SYNC_TABLE"), required=True,
              help="Destination table name.")
@click.option("--query", default=lambda: env_default("SOURCE_QUERY"),
              help="Source query to inspect.")
@click.option("--query-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), default=None,
              help="Read the source query from a file.")
@click.option("--source-url", default=lambda: env_default("SOURCE_URL"),
              help="SQLAlchemy URL of the source database.")
@click.option("--schema", default=lambda: env_default("DB_SCHEMA"),
              help="Destination schema to qualify the table with.")
def render_ddl_cmd(
        table_name: str,
        query: Optional[str],
        query_file: Optional[Path],
        source_url: Optional[str],
        schema: Optional[str],
) -> None:
    """
    Opens the source query only far enough to read its column metadata.
    """
    query = resolve_query(query, query_file)
    source = build_source_client(source_url)

    try:
        with SqlResultReader(source).open(query, CancellationToken()) as result:
            ddl = render_create_table(TableNames.for_table(table_name).staging, result.columns, schema=schema)
        click.echo(ddl)
    except SyncError as error:
        logger.error(f"Render Failed ({type(error).__name__}): {error}")
        sys.exit(1)
    finally:
        source.dispose()


if __name__ == "__main__":
    cli()
