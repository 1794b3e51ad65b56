"""
Shared utilities: logging setup, stage timing and small filesystem helpers.
"""

import functools
import logging
import sys
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Optional


def setup_logging(
    verbose: bool,
    run_name: Optional[str] = None,
    enable_file_logging: bool = False
) -> Optional[Path]:
    """
    Configure logging with optional timestamped file output.

    Args:
        verbose: Enable debug-level logging if True
        run_name: Name used for the log file (usually the table name)
        enable_file_logging: Create timestamped log files when True

    Returns:
        Path of the log file, if one was created
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = None

    if enable_file_logging and run_name:
        logs_dir = Path("logs")
        logs_dir.mkdir(exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = logs_dir / f"{clean_filename(run_name)}_{timestamp}.log"

        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        print(f"Logging to: {log_file}")

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
        force=True
    )
    return log_file


def timer(func: Callable) -> Callable:
    """Decorator to time function execution."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            return func(*args, **kwargs)
        finally:
            logging.info(f"{func.__qualname__} finished in {time.time() - start_time:.2f} seconds")
    return wrapper


def format_duration(seconds: float) -> str:
    """Format a stage or run duration, e.g. ``42.0s``, ``3m 5.0s`` or ``2h 14m``."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {seconds % 60:.1f}s"
    hours, rest = divmod(int(seconds), 3600)
    return f"{hours}h {rest // 60}m"


def clean_filename(filename: str) -> str:
    """
    Clean filename for cross-platform compatibility.

    Args:
        filename: Original filename

    Returns:
        Cleaned filename safe for all platforms
    """
    import re
    cleaned = re.sub(r'[<>:"/\\|?*.]', '_', filename)
    cleaned = re.sub(r'_+', '_', cleaned)
    return cleaned.strip('_')


def remove_file(path: Path) -> bool:
    """Delete ``path`` if it exists. Returns False when deletion failed."""
    try:
        path.unlink(missing_ok=True)
        return True
    except OSError as e:
        logging.warning(f"Could not remove {path}: {e}")
        return False
