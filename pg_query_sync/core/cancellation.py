# pg_query_sync/core/cancellation.py

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from loguru import logger

from pg_query_sync.errors import CancellationError


class CancellationToken:
    """
    Cooperative cancellation signal shared by every blocking step of a sync.

    - `raise_if_cancelled()` is called before each round trip.
    - `on_cancel(callback)` registers a driver hook (e.g. psycopg2 `cancel()`,
      sqlite3 `interrupt()`) for the duration of a `with` block, so a cancel
      issued from another thread can break a statement that is already blocking.
    - `with_timeout(seconds)` cancels automatically once the deadline passes.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._reason: Optional[str] = None
        self._timer: Optional[threading.Timer] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        if seconds <= 0:
            raise ValueError(f"timeout must be positive, got={seconds}")
        token = cls()
        timer = threading.Timer(seconds, token.cancel, kwargs={"reason": f"timed out after {seconds}s"})
        timer.daemon = True
        token._timer = timer
        timer.start()
        return token

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)

        logger.warning(f"Cancellation requested: {reason}")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancellation callback failed: {e}")

    def raise_if_cancelled(self, where: str = "", *, table: Optional[str] = None) -> None:
        if self._event.is_set():
            suffix = f" before {where}" if where else ""
            raise CancellationError(f"Sync {self._reason or 'cancelled'}{suffix}", table=table)

    @contextmanager
    def on_cancel(self, callback: Optional[Callable[[], None]]) -> Iterator[None]:
        if callback is None:
            yield
            return

        with self._lock:
            self._callbacks.append(callback)
        try:
            yield
        finally:
            with self._lock:
                self._callbacks.remove(callback)

    def close(self) -> None:
        """Stop the deadline timer (if any). The token keeps its cancelled state."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __enter__(self) -> "CancellationToken":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
