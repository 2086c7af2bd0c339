# pg_query_sync/config.py

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from tqdm import tqdm


def env_bool(name: str, default: bool = False) -> bool:
    """
    Parses an environment variable as a boolean.
    Returns the default value if the variable is unset.
    True values: "1", "true", "t", "yes", "y", "on" (case-insensitive).
    """
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}

def env_int(name: str, default: int, *, min_value: int = 1) -> int:
    """
    Parses an environment variable as an integer.
    Returns the default value if the variable is unset.
    """
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        val = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got={raw!r}") from e
    if val < min_value:
        raise ValueError(f"{name} must be >= {min_value}, got={val}")
    return val



def project_root() -> Path:
    """Returns the absolute path to the project root directory."""
    return Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class Paths:
    """Immutable container for project directory paths."""
    base_dir: Path
    log_dir: Path


def build_paths() -> Paths:
    """
    Resolves project paths and creates the log directory on disk.
    LOG_DIR overrides the default ./logs.
    """
    base = project_root()

    log_dir = Path(os.getenv("LOG_DIR", str(base / "logs")))
    log_dir.mkdir(parents=True, exist_ok=True)

    return Paths(base_dir=base, log_dir=log_dir)

@dataclass(frozen=True)
class SyncSettings:
    """Immutable container for sync tuning knobs."""
    batch_size: int
    lock_timeout_s: int


def load_sync_settings() -> SyncSettings:
    """
    Loads sync settings from environment variables.

    - COPY_BATCH_SIZE: rows buffered per COPY FROM STDIN flush
    - LOCK_TIMEOUT_S: seconds to wait for the per-table advisory lock
    """
    return SyncSettings(
        batch_size=env_int("COPY_BATCH_SIZE", 10_000, min_value=1),
        lock_timeout_s=env_int("LOCK_TIMEOUT_S", 60, min_value=1),
    )



def configure_logging(paths: Paths) -> None:
    """Configure loguru sinks (console + file) with tqdm-safe console output."""
    logger.remove()

    def _console_sink(message: str) -> None:
        """
        Writes logs to stdout.
        Uses tqdm.write if progress bars are enabled to prevent visual corruption.
        """
        if env_bool("ENABLE_PROGRESS", default=True):
            tqdm.write(message.rstrip("\n"))
        else:
            sys.stdout.write(message)
            sys.stdout.flush()

    # Console sink
    logger.add(
        _console_sink,
        level=os.getenv("LOG_LEVEL", "INFO"),
        colorize=True,
        backtrace=False,
        diagnose=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level}</level> | "
               "<level>{message}</level>\n",
    )

    # File sink
    logger.add(
        str(paths.log_dir / "app.log"),
        rotation="10 MB",
        retention="7 days",
        level="DEBUG",
        backtrace=False,
        diagnose=False,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
    )
