# pg_query_sync/core/__init__.py

__all__ = [
    "cancellation",
    "models",
    "sync_pipeline",
]
