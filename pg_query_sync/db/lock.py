# pg_query_sync/db/lock.py

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from loguru import logger
from sqlalchemy import text

from pg_query_sync.core.cancellation import CancellationToken
from pg_query_sync.ports.database import Database
from pg_query_sync.ports.lock import LockManager


def sync_lock_key(schema: str, table: str) -> str:
    return f"sync:{schema}:{table}"


@dataclass(frozen=True)
class AdvisoryLock(LockManager):
    """
    Caller-side serialization of syncs that target the same table.

    The pipeline itself does not coordinate concurrent callers; holding a
    session-scoped PostgreSQL advisory lock around `sync()` does. The lock lives
    on its own connection, outside the sync transaction.
    """
    db: Database
    timeout_s: Optional[float] = 60.0
    poll_s: float = 0.2

    @contextmanager
    def acquire(self, lock_key: str, cancel: Optional[CancellationToken] = None) -> Iterator[None]:
        """
        Acquires the lock, polling until success, timeout or cancellation.
        """
        with self.db.connect() as conn:
            lock_sql = text("SELECT pg_try_advisory_lock(hashtext(:k)::bigint)")
            unlock_sql = text("SELECT pg_advisory_unlock(hashtext(:k)::bigint)")

            start_time = time.monotonic()

            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled(f"advisory lock '{lock_key}'")

                if bool(conn.execute(lock_sql, {"k": lock_key}).scalar()):
                    break

                if self.timeout_s and (time.monotonic() - start_time) >= self.timeout_s:
                    raise TimeoutError(f"Failed to acquire lock '{lock_key}' after {self.timeout_s}s")

                time.sleep(self.poll_s)

            try:
                logger.info(f"Advisory lock acquired: {lock_key}")
                yield
            finally:
                # Always release the lock using the same connection
                try:
                    conn.execute(unlock_sql, {"k": lock_key})
                    logger.info(f"Advisory lock released: {lock_key}")
                except Exception as e:
                    logger.warning(f"Failed to release lock '{lock_key}': {e}")
