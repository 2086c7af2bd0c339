# pg_query_sync/errors.py

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """
    Base class for every failure raised by a sync.

    `table` is the live destination table the sync was targeting (if known).
    The driver-level cause is always chained via `raise ... from`.
    """

    def __init__(self, message: str, *, table: Optional[str] = None) -> None:
        super().__init__(message)
        self.table = table


class CancellationError(SyncError):
    """The cancellation token fired before or during the sync."""


class QueryError(SyncError):
    """The source query could not be planned or executed."""


class ScanError(SyncError):
    """A source row could not be decoded into the expected column shape."""


class SchemaError(SyncError):
    """Staging DDL could not be rendered or executed."""


class TemplateError(SchemaError):
    """Internal DDL rendering defect (bad identifier, non-string name, ...)."""


class LoadError(SyncError):
    """A bulk-load append, flush or finalize failed."""


class SwapError(SyncError):
    """The rename/drop swap batch failed."""


class CommitError(SyncError):
    """The final commit of the destination transaction failed."""
