# pg_query_sync/db/__init__.py

__all__ = [
    "client",
    "lock",
    "schema",
    "source",
    "loader_copy",
    "swapper",
    "optimize",
]
