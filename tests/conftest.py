"""
Shared pytest fixtures.

- `sqlite_source`: a file-backed SQLite source with a small `commits` table.
- `destination`: an in-memory stand-in for the Postgres destination. It
  understands the statements the pipeline issues (DROP/CREATE/ALTER ... RENAME,
  COPY FROM STDIN) and keeps committed and in-transaction state apart, so
  tests can assert on what a fresh reader would see.
"""

import copy
import os
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import pytest
from sqlalchemy import create_engine

# Progress bars off before any project import reads the flag
os.environ.setdefault("ENABLE_PROGRESS", "false")

from pg_query_sync.core.models import ColumnDescriptor, decode_row  # noqa: E402
from pg_query_sync.db.client import SourceClient  # noqa: E402


# ---------------------------------------------------------------------------
# Source side
# ---------------------------------------------------------------------------

COMMITS = [
    (1, "a1f", "alice", "2021-01-01 10:00:00", 1),
    (2, "b2e", "bob", "2021-01-02 11:30:00", 0),
    (3, "c3d", None, "2021-01-03 09:15:00", 1),
]


@pytest.fixture
def sqlite_source(tmp_path) -> Iterator[SourceClient]:
    engine = create_engine(f"sqlite:///{tmp_path / 'source.db'}")
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE commits ("
            "seq INTEGER, hash TEXT, author TEXT, committed_at DATETIME, merged BOOLEAN)"
        )
        for row in COMMITS:
            conn.exec_driver_sql("INSERT INTO commits VALUES (?, ?, ?, ?, ?)", row)

    client = SourceClient(engine=engine)
    yield client
    engine.dispose()


@dataclass
class StaticResultSet:
    columns: Tuple[ColumnDescriptor, ...]
    rows: Iterator[Any]


@dataclass
class StaticReader:
    """
    Result reader with fixed columns and rows (typed descriptors included).
    `on_row(i)` runs before row i is handed out.
    """
    columns: Sequence[Tuple[str, str]]
    rows: Sequence[Sequence[Any]]
    on_row: Optional[Callable[[int], None]] = None
    opened: int = 0
    closed: int = 0

    @contextmanager
    def open(self, query, cancel):
        cancel.raise_if_cancelled("source query")
        self.opened += 1
        cols = tuple(ColumnDescriptor(name, type_name) for name, type_name in self.columns)

        def _rows():
            for i, raw in enumerate(self.rows):
                cancel.raise_if_cancelled("source fetch")
                if self.on_row is not None:
                    self.on_row(i)
                yield decode_row(raw, len(cols))

        try:
            yield StaticResultSet(columns=cols, rows=_rows())
        finally:
            self.closed += 1


# ---------------------------------------------------------------------------
# Destination side
# ---------------------------------------------------------------------------

class FakeDBError(Exception):
    pass


@dataclass
class FakeTable:
    columns: List[Tuple[str, str]]
    rows: List[List[Optional[str]]] = field(default_factory=list)


_QIDENT = r'"((?:[^"]|"")*)"'
_QNAME = rf'(?:{_QIDENT}\.)?{_QIDENT}'


def _unq(name: str) -> str:
    return name.replace('""', '"')


def _parse_copy_payload(payload: str, width: int) -> List[List[Optional[str]]]:
    """Parser for the encoder's CSV dialect: empty unquoted = NULL, everything else quoted."""
    rows: List[List[Optional[str]]] = []
    i, n = 0, len(payload)
    while i < n:
        row: List[Optional[str]] = []
        while True:
            if payload[i] == '"':
                i += 1
                buf = []
                while True:
                    if payload[i] == '"':
                        if i + 1 < n and payload[i + 1] == '"':
                            buf.append('"')
                            i += 2
                            continue
                        i += 1
                        break
                    buf.append(payload[i])
                    i += 1
                row.append("".join(buf))
            else:
                row.append(None)
            sep = payload[i]
            i += 1
            if sep == "\n":
                break
        assert len(row) == width, f"row width {len(row)} != {width}"
        rows.append(row)
    return rows


class FakeDestination:
    """Catalog of committed tables plus knobs for failure injection."""

    schema = "public"

    def __init__(self) -> None:
        self.tables: Dict[str, FakeTable] = {}
        self.statements: List[str] = []
        self.copy_calls = 0
        self.commits = 0
        self.rollbacks = 0
        self.cancel_calls = 0
        self.connections_open = 0
        self.isolation_levels: List[Optional[str]] = []

        # failure injection
        self.fail_on: Optional[str] = None
        self.fail_copy_after: Optional[int] = None
        self.fail_commit = False
        self.fail_rollback = False
        self.before_statement: Optional[Callable[[str], None]] = None

    # helpers for tests
    def seed(self, name: str, columns: List[Tuple[str, str]], rows: List[List[Optional[str]]]) -> None:
        self.tables[name] = FakeTable(columns=list(columns), rows=[list(r) for r in rows])

    def snapshot(self) -> Dict[str, Tuple[List[Tuple[str, str]], List[List[Optional[str]]]]]:
        return {k: (list(v.columns), [list(r) for r in v.rows]) for k, v in self.tables.items()}

    def connect(self) -> "FakeConnection":
        return FakeConnection(self)


class FakeDbapiConnection:
    def __init__(self, db: FakeDestination) -> None:
        self.db = db

    def cancel(self) -> None:
        self.db.cancel_calls += 1


class FakePoolProxy:
    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn
        self.dbapi_connection = FakeDbapiConnection(conn.db)

    def cursor(self) -> "FakeCursor":
        return FakeCursor(self._conn)


class FakeTransaction:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self.is_active = True

    def commit(self) -> None:
        db = self.conn.db
        if db.before_statement is not None:
            db.before_statement("COMMIT")
        if db.fail_commit:
            self.is_active = False
            raise FakeDBError("could not serialize access")
        db.tables = self.conn.working
        db.commits += 1
        self.is_active = False

    def rollback(self) -> None:
        db = self.conn.db
        db.rollbacks += 1
        self.is_active = False
        if db.fail_rollback:
            raise FakeDBError("connection lost during rollback")
        self.conn.working = {}


class FakeConnection:
    def __init__(self, db: FakeDestination) -> None:
        self.db = db
        self.connection = FakePoolProxy(self)
        self.working: Dict[str, FakeTable] = {}
        self.trans: Optional[FakeTransaction] = None

    def __enter__(self) -> "FakeConnection":
        self.db.connections_open += 1
        return self

    def __exit__(self, *exc) -> None:
        self.db.connections_open -= 1
        if self.trans is not None and self.trans.is_active:
            self.trans.rollback()

    def execution_options(self, **kw) -> "FakeConnection":
        self.db.isolation_levels.append(kw.get("isolation_level"))
        return self

    def begin(self) -> FakeTransaction:
        self.working = copy.deepcopy(self.db.tables)
        self.trans = FakeTransaction(self)
        return self.trans


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.closed = False

    @property
    def tables(self) -> Dict[str, FakeTable]:
        return self.conn.working

    def close(self) -> None:
        self.closed = True

    def _check(self, sql: str) -> None:
        db = self.conn.db
        db.statements.append(sql)
        if db.before_statement is not None:
            db.before_statement(sql)
        if db.fail_on and db.fail_on in sql:
            raise FakeDBError(f"injected failure on: {sql}")

    def execute(self, sql: str) -> None:
        for stmt in [s.strip() for s in sql.split(";\n")]:
            stmt = stmt.rstrip(";").strip()
            if stmt:
                self._check(stmt)
                self._apply(stmt)

    def _apply(self, stmt: str) -> None:
        m = re.fullmatch(rf"DROP TABLE IF EXISTS {_QNAME}", stmt)
        if m:
            self.tables.pop(_unq(m.group(2)), None)
            return

        m = re.fullmatch(rf"CREATE TABLE {_QNAME} \(\n(.*)\n\)", stmt, flags=re.S)
        if m:
            name = _unq(m.group(2))
            if name in self.tables:
                raise FakeDBError(f'relation "{name}" already exists')
            cols = []
            for line in m.group(3).split(",\n"):
                cm = re.fullmatch(rf"\s*{_QIDENT} (.+)", line)
                cols.append((_unq(cm.group(1)), cm.group(2)))
            self.tables[name] = FakeTable(columns=cols)
            return

        m = re.fullmatch(rf"ALTER TABLE (IF EXISTS )?{_QNAME} RENAME TO {_QIDENT}", stmt)
        if m:
            src, dst = _unq(m.group(3)), _unq(m.group(4))
            if src not in self.tables:
                if m.group(1):
                    return
                raise FakeDBError(f'relation "{src}" does not exist')
            if dst in self.tables:
                raise FakeDBError(f'relation "{dst}" already exists')
            self.tables[dst] = self.tables.pop(src)
            return

        raise AssertionError(f"unexpected statement: {stmt}")

    def copy_expert(self, sql: str, file: Any) -> None:
        db = self.conn.db
        self._check(sql)
        db.copy_calls += 1
        if db.fail_copy_after is not None and db.copy_calls > db.fail_copy_after:
            raise FakeDBError("invalid input syntax for type integer")

        m = re.match(rf"COPY {_QNAME} \((.*)\) FROM STDIN", sql)
        name = _unq(m.group(2))
        table = self.tables[name]
        width = len(re.findall(_QIDENT, m.group(3)))
        assert width == len(table.columns)
        table.rows.extend(_parse_copy_payload(file.read(), width))


@pytest.fixture
def destination() -> FakeDestination:
    return FakeDestination()
