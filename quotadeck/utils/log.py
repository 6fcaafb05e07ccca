"""Timestamped logging to the terminal and a daily log file."""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

_log_file = None
_log_file_path: Optional[Path] = None
_log_to_file = True
_debug = os.environ.get("QUOTADECK_DEBUG", "").lower() in ("1", "true", "yes")


def configure_logging(debug: Optional[bool] = None, log_dir: Optional[Path] = None,
                      to_file: Optional[bool] = None):
    """Adjust logging at startup. Closes the current log file if the target changes."""
    global _debug, _log_file_path, _log_to_file
    if debug is not None:
        _debug = debug
    if to_file is not None:
        _log_to_file = to_file
    if log_dir is not None:
        close_log_file()
        _log_file_path = Path(log_dir) / _log_filename()


def is_debug() -> bool:
    return _debug


def _log_filename() -> str:
    return f"quotadeck_{datetime.now().strftime('%Y%m%d')}.log"


def _get_log_file_path() -> Path:
    """Daily log file in <config dir>/logs."""
    global _log_file_path
    if _log_file_path is None:
        from .settings import get_config_dir
        logs_dir = get_config_dir() / "logs"
        _log_file_path = logs_dir / _log_filename()
    return _log_file_path


def _get_log_file():
    """Get or create the log file handle."""
    global _log_file
    if not _log_to_file:
        return None
    if _log_file is None or _log_file.closed:
        log_path = _get_log_file_path()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            _log_file = open(log_path, "a", encoding="utf-8")
            _log_file.write(f"\n{'=' * 80}\n")
            _log_file.write(f"Session started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            _log_file.write(f"{'=' * 80}\n")
            _log_file.flush()
        except OSError as e:
            print(f"Warning: Could not open log file {log_path}: {e}", file=sys.stderr)
            _log_file = None
    return _log_file


def close_log_file():
    """Close the log file handle."""
    global _log_file
    if _log_file and not _log_file.closed:
        try:
            _log_file.write(f"Session ended: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            _log_file.close()
        except OSError:
            pass
    _log_file = None


def log_with_timestamp(message: str, prefix: str = ""):
    """
    Print a log message with timestamp to both terminal and log file.

    Args:
        message: The log message
        prefix: Optional prefix (e.g., "[QuotaViewModel]", "[APIClient]")
    """
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
    log_message = f"{timestamp} {prefix} {message}" if prefix else f"{timestamp} {message}"

    print(log_message)
    sys.stdout.flush()

    log_file = _get_log_file()
    if log_file:
        try:
            log_file.write(log_message + "\n")
            log_file.flush()
        except OSError as e:
            print(f"Warning: Could not write to log file: {e}", file=sys.stderr)


def log_debug(message: str, prefix: str = ""):
    """log_with_timestamp, only when --debug / QUOTADECK_DEBUG is on."""
    if _debug:
        log_with_timestamp(message, prefix)
