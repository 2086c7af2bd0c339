# pg_query_sync/utils/identifiers.py

from typing import Optional

# PostgreSQL NAMEDATALEN - 1; longer identifiers are silently truncated by the server
MAX_IDENT_BYTES = 63


def validate_ident(name: str) -> str:
    if not isinstance(name, str) or not name:
        raise ValueError(f"Identifier must be a non-empty string: {name!r}")
    if "\x00" in name:
        raise ValueError(f"Identifier contains a NUL byte: {name!r}")
    if len(name.encode("utf-8")) > MAX_IDENT_BYTES:
        raise ValueError(f"Identifier longer than {MAX_IDENT_BYTES} bytes: {name!r}")
    return name


def qident(name: str) -> str:
    """Quote an identifier the way PostgreSQL expects (embedded quotes doubled)."""
    if not isinstance(name, str):
        raise TypeError(f"Identifier must be a string, got {type(name).__name__}")
    if "\x00" in name:
        raise ValueError(f"Identifier contains a NUL byte: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def qtable(table: str, schema: Optional[str] = None) -> str:
    if schema:
        return f"{qident(schema)}.{qident(table)}"
    return qident(table)
