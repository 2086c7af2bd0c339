# pg_query_sync/ports/lock.py

from __future__ import annotations

from typing import ContextManager, Optional, Protocol

from pg_query_sync.core.cancellation import CancellationToken


class LockManager(Protocol):
    def acquire(self, lock_key: str, cancel: Optional[CancellationToken] = None) -> ContextManager[None]: ...
