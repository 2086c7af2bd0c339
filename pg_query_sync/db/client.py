# pg_query_sync/db/client.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ContextManager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, URL, make_url

from pg_query_sync.utils.identifiers import qident, validate_ident


@dataclass(frozen=True)
class PostgresClient:
    """
    Small wrapper around a SQLAlchemy Postgres engine (the sync destination).

    Purpose:
    - Create and configure the engine
    - Keep schema handling consistent
    - Provide helpers for table metadata
    - Expose raw psycopg2 connections for the sync transaction and COPY
    """

    engine: Engine
    schema: str = "public"

    @classmethod
    def from_params(
        cls,
        user: str,
        password: str,
        host: str,
        port: int,
        db: str,
        schema: str = "public",
    ) -> "PostgresClient":
        """
        Build a PostgresClient from connection parameters.
        """

        schema = validate_ident(schema.strip())

        # Build database URL (handles special characters safely)
        url = URL.create(
            drivername="postgresql+psycopg2",
            username=user,
            password=password,
            host=host,
            port=port,
            database=db,
        )

        engine = create_engine(
            url,
            pool_pre_ping=True,   # reconnect if connection is stale
            connect_args={
                # Set search_path for every connection, including raw psycopg2 ones.
                # 'public' is kept as a fallback.
                "options": f"-csearch_path={schema},public"
            },
        )

        client = cls(engine=engine, schema=schema)
        client.ensure_schema_exists()
        return client

    def ensure_schema_exists(self) -> None:
        """
        Create schema if it does not exist.
        """
        with self.engine.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {qident(self.schema)}"))

    # ------------------------------------------------------------------

    def table_exists(self, table: str) -> bool:
        """
        Check whether a table exists in the configured schema.
        """
        with self.engine.connect() as conn:
            return bool(
                conn.execute(
                    text(
                        """
                        SELECT EXISTS (
                            SELECT 1
                            FROM information_schema.tables
                            WHERE table_schema = :s
                              AND table_name   = :t
                        )
                        """
                    ),
                    {"s": self.schema, "t": table},
                ).scalar_one()
            )

    def begin(self) -> ContextManager[Connection]:
        """
        Transaction context manager.
        """
        return self.engine.begin()

    def connect(self) -> ContextManager[Connection]:
        """
        Connection context manager.
        """
        return self.engine.connect()


@dataclass(frozen=True)
class SourceClient:
    """
    The engine the source query runs on. Any SQLAlchemy dialect works;
    only the DB-API connection behind `raw_connection()` is used, plus the
    dialect name to pick how declared column types are read.
    """

    engine: Engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @classmethod
    def from_url(cls, url: str) -> "SourceClient":
        if not url:
            raise ValueError("source url must be a non-empty string")
        return cls(engine=create_engine(make_url(url)))

    def raw_connection(self) -> Any:
        return self.engine.raw_connection()

    def dispose(self) -> None:
        self.engine.dispose()
