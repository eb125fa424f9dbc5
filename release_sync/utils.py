"""
Utility functions for the release sync engine.

Provides logging setup with run-id tracking, the clock abstraction used for
pacing and backoff, batching and timing helpers.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")

# Context variable for tracking the active sync run across worker threads
run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


class RunIdFilter(logging.Filter):
    """Add run_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get() or "-"
        return True


def setup_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up a logger with file and optional console handlers.

    Args:
        name: Logger name (used for both logger and log file)
        log_dir: Directory for log files (defaults to ./logs)
        level: Logging level
        console_output: Whether to also log to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding handlers multiple times
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(run_id)s] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if log_dir is None:
        log_dir = Path.cwd() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / f"{name}_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    file_handler.addFilter(RunIdFilter())
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only warnings and above to console
        console_handler.setFormatter(formatter)
        console_handler.addFilter(RunIdFilter())
        logger.addHandler(console_handler)

    return logger


def generate_run_id() -> str:
    """Generate a short unique run ID."""
    return uuid.uuid4().hex[:8]


class Clock:
    """
    Time source used for pacing and backoff.

    Monotonic time for measuring intervals, real sleep for waiting.
    Tests inject a fake clock so retries run without wall-clock waits.
    """

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """
    Split items into consecutive lists of at most `size` elements.

    Args:
        items: Items to split, order preserved
        size: Maximum chunk size (must be positive)

    Yields:
        Chunks of items
    """
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


class Timer:
    """Context manager for timing operations."""

    def __init__(self, description: str = "Operation"):
        self.description = description
        self.start_time: float = 0
        self.elapsed: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.time()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.time() - self.start_time

    def __str__(self) -> str:
        return f"{self.description}: {format_duration(self.elapsed)}"
