"""
Logging - Application logging configuration and disk persistence.

Provides:
- Python logging configuration with console and optional file output
- Log persistence to daily files: meridian-YYYY-MM-DD.log
- Automatic cleanup of old log files
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
import logging

from meridian.utils import get_logs_dir

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
FILE_LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: int = logging.INFO, retention_days: int = 0) -> None:
    """
    Configure Python logging for the application.

    Sets up a root logger with console output and, when retention_days is
    positive, a file handler writing to today's log file. Old files are
    pruned at the same time.

    Args:
        level: Logging level (default: INFO)
        retention_days: Days of log files to keep (0 = no file logging)
    """
    root_logger = logging.getLogger()

    # Only configure if not already configured
    if root_logger.handlers:
        return

    root_logger.setLevel(level)

    # Console handler with simple format
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    if retention_days > 0:
        file_handler = logging.FileHandler(get_log_file_path(), encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        root_logger.addHandler(file_handler)
        cleanup_old_logs(retention_days)

    # web3 and httpx are chatty at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.getLogger("web3").setLevel(max(level, logging.WARNING))


def get_log_file_path(date: Optional[datetime] = None, logs_dir: Optional[Path] = None) -> Path:
    """Get the log file path for a specific date (defaults to today)."""
    if date is None:
        date = datetime.now()
    filename = f"meridian-{date.strftime('%Y-%m-%d')}.log"
    return (logs_dir or get_logs_dir()) / filename


def load_recent_logs(max_lines: int = 500, logs_dir: Optional[Path] = None) -> list[str]:
    """
    Load recent log lines from disk.

    Reads from today's log file, and if needed yesterday's,
    to get up to max_lines.

    Returns:
        List of log lines, oldest first
    """
    if max_lines <= 0:
        return []

    lines = []

    today_path = get_log_file_path(logs_dir=logs_dir)
    if today_path.exists():
        lines = _read_last_n_lines(today_path, max_lines)

    if len(lines) < max_lines:
        yesterday = datetime.now() - timedelta(days=1)
        yesterday_path = get_log_file_path(yesterday, logs_dir)
        if yesterday_path.exists():
            remaining = max_lines - len(lines)
            lines = _read_last_n_lines(yesterday_path, remaining) + lines

    return lines


def _read_last_n_lines(file_path: Path, n: int) -> list[str]:
    """Read the last N lines from a file."""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return [line.rstrip('\n') for line in f.readlines()[-n:]]
    except OSError:
        return []


def cleanup_old_logs(retention_days: int, logs_dir: Optional[Path] = None) -> int:
    """
    Delete log files older than retention_days.

    Returns:
        Number of files deleted
    """
    if retention_days < 0:
        return 0

    logs_dir = logs_dir or get_logs_dir()
    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for file_path in logs_dir.glob("meridian-*.log"):
        try:
            file_date = datetime.strptime(file_path.stem.replace("meridian-", ""), "%Y-%m-%d")
            if file_date < cutoff_date:
                file_path.unlink()
                deleted_count += 1
        except (ValueError, OSError):
            # Skip files that don't match expected format
            pass

    return deleted_count
