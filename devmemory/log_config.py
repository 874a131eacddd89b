"""Logging setup for Dev Memory.

All modules log through loguru with a bound component name:

    log = get_logger("migration")
    log.info(f"Migrated {n} entries")

Sinks:
- stderr (stdout is reserved for the MCP stdio channel)
- daily file under DEV_MEMORY_LOG_DIR (default ~/.dev_memory/logs),
  rotated at 10 MB, kept 7 days, zipped

Levels come from DEV_MEMORY_LOG_LEVEL (default INFO). A single component can
be made louder or quieter with DEV_MEMORY_LOG_<COMPONENT>, e.g.
DEV_MEMORY_LOG_STORE=TRACE or DEV_MEMORY_LOG_EMBEDDINGS=WARNING.
"""

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter

from loguru import logger

COMPONENTS = ("store", "embeddings", "migration", "context", "graph", "server", "config")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}:{function}:{line} | {message}"


def _level_no(level: str) -> int | None:
    try:
        return logger.level(level).no
    except ValueError:
        return None


def _build_filter():
    """Threshold per record: the component override if set, else the global level."""
    default = _level_no(os.getenv("DEV_MEMORY_LOG_LEVEL", "INFO").upper()) or 0
    overrides = {}
    for component in COMPONENTS:
        level = os.getenv(f"DEV_MEMORY_LOG_{component.upper()}", "").upper()
        if level and _level_no(level) is not None:
            overrides[component] = _level_no(level)

    def _filter(record) -> bool:
        component = record["extra"].get("name", "").split(".")[0]
        return record["level"].no >= overrides.get(component, default)

    return _filter


def setup_logging(log_dir: str | Path | None = None) -> Path:
    """Replace loguru's default sink with the Dev Memory sinks.

    Returns:
        The directory receiving log files
    """
    log_dir = Path(log_dir or os.getenv("DEV_MEMORY_LOG_DIR", str(Path.home() / ".dev_memory" / "logs")))
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.configure(extra={"name": "devmemory"})
    logger.add(sys.stderr, level=0, filter=_build_filter(), format=CONSOLE_FORMAT, colorize=True)
    logger.add(
        log_dir / "devmemory_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        format=FILE_FORMAT,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
    )
    return log_dir


setup_logging()


def get_logger(name: str):
    """Logger with the component name bound (used by the level overrides)."""
    return logger.bind(name=name)


@contextmanager
def log_timing(operation: str, log_instance=None, level: str = "debug"):
    """Log how long the block took.

    Yields a dict whose 'elapsed_ms' is filled in when the block exits.

    Example:
        with log_timing("Batch upsert", log):
            await store.upsert_vectors(records)
    """
    log_fn = log_instance or logger
    timing = {"elapsed_ms": 0.0}
    start = perf_counter()
    try:
        yield timing
    finally:
        timing["elapsed_ms"] = (perf_counter() - start) * 1000
        getattr(log_fn, level)(f"{operation}: {timing['elapsed_ms']:.1f}ms")


__all__ = ["logger", "get_logger", "log_timing", "setup_logging"]
