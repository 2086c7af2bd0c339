# pg_query_sync/ports/__init__

__all__ = [
    "database",
    "source",
    "schema",
    "loader",
    "swapper",
    "lock"
]
