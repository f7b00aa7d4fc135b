"""
Utility functions for the cfs resource mirror.

Logging Level Standards:
------------------------
- ERROR: A resource kind that failed as a whole
         "[vpcs] Failed: {e}"
- WARNING: A collected branch failure (one region of one kind)
           "[functions/eu-west-3] AccessDeniedException: ..."
- INFO: Progress messages, file counts
        "[buckets] Wrote 42 files"
- DEBUG: Per-item writes
         "Wrote .cfs/vpcs/us-east-1/vpc-0abc"
"""
import json
import logging
import os
import re
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
from urllib.parse import quote

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import FILE_MODE, JSON_INDENT, LEAF_FILE_NAME

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1)
        max_wait: Maximum wait time between retries in seconds (default: 60)
        exceptions: Tuple of exception types to retry on (default: all Exceptions)
        should_retry: Optional predicate narrowing which exceptions are retried

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_attempts=5, should_retry=is_throttling_error)
        def describe_regions():
            ...
    """
    if should_retry is not None:
        predicate = should_retry
        retry_condition = retry_if_exception(lambda e: isinstance(e, exceptions) and predicate(e))
    else:
        retry_condition = retry_if_exception_type(exceptions)

    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_condition,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)
    return decorator


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for a sync with rich display.

    Falls back to simple print statements if stdout is not a TTY (e.g., when
    piping output). Resource kinds complete in worker threads, so counters are
    updated under a lock.

    Usage:
        with ProgressTracker(total_kinds=len(writers)) as tracker:
            ...
            tracker.complete_kind("vpcs", files_written)
    """

    def __init__(self, total_kinds: int = 0, show_progress: bool = True):
        self.total_kinds = total_kinds
        self.show_progress = show_progress and sys.stdout.isatty()

        self.completed_kinds = 0
        self.total_files = 0
        self.files_by_kind: Dict[str, int] = {}

        self._lock = threading.Lock()
        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None

    def __enter__(self):
        if self.show_progress:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task("Downloading resource information", total=self.total_kinds or 1)
            self._progress.start()
        else:
            print("Downloading resource information ...")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._progress is not None:
            self._progress.stop()
        return False

    def complete_kind(self, kind: str, files_written: int) -> None:
        """Mark a resource kind as complete."""
        with self._lock:
            self.completed_kinds += 1
            self.total_files += files_written
            self.files_by_kind[kind] = self.files_by_kind.get(kind, 0) + files_written
            if self._progress is not None:
                assert self._main_task is not None
                self._progress.update(self._main_task, advance=1, description=f"[{kind}] done")


def print_summary_table(files_by_kind: Dict[str, int], duration_seconds: int) -> None:
    """Print the number of files written per resource kind."""
    table = Table(title="Sync Summary")
    table.add_column("Resource", style="cyan")
    table.add_column("Files", style="green", justify="right")

    for kind in sorted(files_by_kind):
        table.add_row(kind, f"{files_by_kind[kind]:,}")
    table.add_row("TOTAL", f"{sum(files_by_kind.values()):,}", style="bold")

    unit = "second" if duration_seconds == 1 else "seconds"
    Console().print(Panel(table, subtitle=f"The operation took {duration_seconds} {unit}."))


# =============================================================================
# Write Targets
# =============================================================================

# Same set of unescaped characters as JavaScript's encodeURIComponent
_SEGMENT_SAFE_CHARS = "!*'()"


def encode_path_segment(segment: str) -> str:
    """
    Percent-encode a single path segment.

    Segments made only of dots are encoded too, so '.' and '..' can never
    move a file out of its resource directory.
    """
    encoded = quote(segment, safe=_SEGMENT_SAFE_CHARS)
    if encoded and set(encoded) == {'.'}:
        return encoded.replace('.', '%2E')
    return encoded


def split_hierarchy(name: str) -> List[str]:
    """
    Decompose a slash-delimited name into encoded path segments.

    Example: '/prod/db/password' -> ['prod', 'db', 'password']
    """
    return [encode_path_segment(part) for part in name.split('/') if part]


def trim_to_suffix(value: str, qualifier: str) -> str:
    """
    Return the part of an ARN or URL after a qualifier.

    Example: trim_to_suffix('arn:aws:acm:us-east-1:123:certificate/abc', ':certificate/') -> 'abc'
    """
    index = value.find(qualifier)
    if index == -1:
        return value
    return value[index + len(qualifier):]


def make_leaf_target(filepath: str, root: str) -> str:
    """
    Resolve where a hierarchical resource file goes when names nest.

    A parameter '/app' and a parameter '/app/db' need 'app' to be both a file
    and a directory. Whichever arrives second turns 'app' into a directory
    and the '/app' document lives in 'app/%leaf'.

    Args:
        filepath: Intended file path of the resource
        root: Directory under which path components may be resources

    Returns:
        Path to write the resource document to
    """
    relative = os.path.relpath(os.path.dirname(filepath), root)
    if relative != os.curdir:
        current = root
        for part in relative.split(os.sep):
            current = os.path.join(current, part)
            if os.path.isfile(current):
                moved = current + LEAF_FILE_NAME
                os.replace(current, moved)
                os.makedirs(current)
                os.replace(moved, os.path.join(current, LEAF_FILE_NAME))

    if os.path.isdir(filepath):
        return os.path.join(filepath, LEAF_FILE_NAME)
    return filepath


def write_json(data: Any, filepath: str) -> None:
    """Write data to an indented JSON file with secure permissions."""
    parent = os.path.dirname(filepath)
    if parent:
        # Concurrent branches may create the same parent
        os.makedirs(parent, exist_ok=True)

    # Create with restrictive permissions (owner read/write only)
    # Inventory data may contain sensitive resource metadata
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    try:
        f = os.fdopen(fd, 'w')
    except Exception:
        os.close(fd)
        raise
    with f:
        json.dump(data, f, indent=JSON_INDENT, default=str)
    logger.debug(f"Wrote {filepath}")


# =============================================================================
# Log Redaction
# =============================================================================

_LOG_REDACT_PATTERNS: List[Tuple[re.Pattern, Callable[[re.Match], str]]] = [
    # Account IDs inside ARNs
    (re.compile(r'(arn:aws[-a-z]*:[a-z0-9-]+:[a-z0-9-]*:)(\d{12})(:)'),
     lambda m: f"{m.group(1)}***{m.group(3)}"),
    # Bare account IDs
    (re.compile(r'\b(\d{12})\b(?!\d)'), lambda m: "***"),
    # Access key IDs (long-term and temporary)
    (re.compile(r'\b((?:AKIA|ASIA)[0-9A-Z]{16})\b'), lambda m: f"{m.group(1)[:4]}***"),
]


def redact_log_message(message: str) -> str:
    """Redact account IDs and access key IDs from a log message."""
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """Logging filter that redacts sensitive data from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    # Console handler (stderr)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # botocore is chatty at DEBUG
    logging.getLogger('botocore').setLevel(max(numeric_level, logging.INFO))
    logging.getLogger('urllib3').setLevel(max(numeric_level, logging.INFO))

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(log_dir, f"cfs_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs never carry account IDs or access keys
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)
