"""
Utility functions for the VM assessment collector.

Logging Level Standards:
------------------------
- ERROR: Failures that abandon a whole subscription or the run
         "Failed to assess subscription {name}: {e}"
- WARNING: Partial failures (one VM's enrichment step, status query)
           "Failed to resolve network for VM {name}: {e}"
- INFO: Progress messages, resource counts
        "Found 42 Azure VMs"
        "Fetching VM size catalog for region eastus"
- DEBUG: Unresolved references that take a placeholder value
         "Size Standard_A0 not available in region westus"
"""
import csv
import io
import json
import logging
import os
import re
import sys
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

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
    stop_after_attempt,
    wait_exponential,
)

from .constants import LOG_FILE_PREFIX, PROVIDER_AZURE

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])
T = TypeVar('T')
R = TypeVar('R')


# =============================================================================
# Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when an Azure API returns an auth error that should stop the
    current subscription pass rather than being retried or logged and skipped.
    """
    def __init__(self, message: str, provider: str = PROVIDER_AZURE, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


class RunError(Exception):
    """Run-level failure: nothing can be assessed and no output is produced."""


# Azure error status codes that indicate auth/permission issues
AZURE_AUTH_STATUS_CODES = {401, 403}


def is_auth_error(exc: BaseException) -> bool:
    """
    Check if an exception represents an Azure authentication/authorization error.

    Detects HttpResponseError / ClientAuthenticationError with a 401/403
    status, or whose message mentions authentication or authorization.
    """
    if isinstance(exc, AuthError):
        return True

    if type(exc).__name__ in ('HttpResponseError', 'ClientAuthenticationError'):
        status_code = getattr(exc, 'status_code', None)
        if status_code in AZURE_AUTH_STATUS_CODES:
            return True
        error_msg = str(exc).lower()
        return 'authentication' in error_msg or 'authorization' in error_msg

    return False


def check_and_raise_auth_error(exc: Exception, context: str, provider: str = PROVIDER_AZURE) -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and continuing.

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if isinstance(exc, AuthError):
        raise exc
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            provider=provider,
            original_error=exc
        ) from exc


# =============================================================================
# Retry
# =============================================================================

def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (Exception,)
) -> Callable[[F], F]:
    """
    Decorator for retrying fetch functions with exponential backoff.

    Auth errors are never retried.

    Example:
        @retry_with_backoff(max_attempts=5, exceptions=(ConnectionError, TimeoutError))
        def call_api():
            ...
    """
    def should_retry(exc: BaseException) -> bool:
        return isinstance(exc, exceptions) and not is_auth_error(exc)

    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)  # type: ignore[return-value]
    return decorator


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for assessment runs with rich display.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output).

    Usage:
        with ProgressTracker("Azure VM", total_subscriptions=3) as tracker:
            for sub in subscriptions:
                tracker.start_subscription(sub.subscription_id, sub.display_name)
                batch = assess(...)
                tracker.add_vms(batch.vm_count, batch.total_disk_gb)
                tracker.complete_subscription()
    """

    def __init__(
        self,
        title: str,
        total_subscriptions: int = 0,
        show_progress: bool = True
    ):
        self.title = title
        self.total_subscriptions = total_subscriptions
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_subscriptions = 0
        self.failed_subscriptions = 0
        self.total_vms = 0
        self.total_disk_gb = 0.0
        self.current_subscription = ""

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None
        self._use_rich = self.show_progress

    def __enter__(self):
        if self._use_rich:
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
            self._main_task = self._progress.add_task(
                f"{self.title} Assessment", total=self.total_subscriptions or 1
            )
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.title} Assessment Starting")
            print(f"{'='*60}")
            if self.total_subscriptions:
                print(f"Subscriptions: {self.total_subscriptions}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def start_subscription(self, subscription_id: str, subscription_name: str = ""):
        """Mark the start of processing a subscription."""
        self.current_subscription = subscription_id
        display = f"{subscription_name} ({subscription_id})" if subscription_name else subscription_id
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, description=f"{self.title}: {display}")
        else:
            print(f"\nSubscription: {display}")

    def add_vms(self, count: int, disk_gb: float = 0.0):
        """Add assessed VMs to the running total."""
        self.total_vms += count
        self.total_disk_gb += disk_gb

    def complete_subscription(self, failed: bool = False):
        """Mark a subscription as done."""
        self.completed_subscriptions += 1
        if failed:
            self.failed_subscriptions += 1
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)
        else:
            status = "Failed" if failed else "Complete"
            print(f"  {status} - Running total: {self.total_vms:,} VMs, {self.total_disk_gb:,.0f} GiB of disk")

    def _print_summary_rich(self):
        table = Table(title=f"{self.title} Assessment Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Subscriptions", str(self.completed_subscriptions))
        if self.failed_subscriptions:
            table.add_row("Failed", str(self.failed_subscriptions))
        table.add_row("Virtual Machines", f"{self.total_vms:,}")
        table.add_row("Disk Capacity", f"{self.total_disk_gb:,.2f} GiB")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        print(f"\n{'='*60}")
        print(f"{self.title} Assessment Complete")
        print(f"{'='*60}")
        print(f"  Subscriptions:    {self.completed_subscriptions}")
        if self.failed_subscriptions:
            print(f"  Failed:           {self.failed_subscriptions}")
        print(f"  Virtual Machines: {self.total_vms:,}")
        print(f"  Disk Capacity:    {self.total_disk_gb:,.2f} GiB")
        print()


# =============================================================================
# Parallel Execution
# =============================================================================

def parallel_map(
    func: Callable[[T], R],
    items: Sequence[T],
    parallel_workers: int = 1
) -> List[R]:
    """
    Apply func to every item, serially or on a thread pool.

    Results are returned in input order regardless of completion order.
    Exceptions raised by func propagate to the caller.
    """
    if parallel_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    results: List[Optional[R]] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=parallel_workers) as executor:
        futures = {executor.submit(func, item): index for index, item in enumerate(items)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return results  # type: ignore[return-value]


# =============================================================================
# Run Identity
# =============================================================================

def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def safe_filename(value: str, default: str = "unnamed") -> str:
    """Reduce a display name to characters safe in a file name."""
    cleaned = re.sub(r'[^A-Za-z0-9._-]+', '_', value or '').strip('._')
    return cleaned or default


def is_blob_url(path: str) -> bool:
    return path.startswith("https://") and ".blob.core.windows.net" in path


# =============================================================================
# Logging
# =============================================================================

def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

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

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"{LOG_FILE_PREFIX}_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    # Azure SDK HTTP logging is very chatty at INFO
    logging.getLogger('azure').setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)


# =============================================================================
# Output Writers
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    if is_blob_url(filepath):
        write_to_blob(json.dumps(data, indent=2, default=str), filepath)
        return

    # Local file - owner read/write only, the inventory lists internal addresses
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2, default=str)
    except Exception:
        os.close(fd)
        raise
    print(f"Wrote {filepath}")


def write_csv(data: List[Dict], filepath: str, fieldnames: Optional[List[str]] = None) -> None:
    """Write data to CSV file."""
    if not data:
        return

    if not fieldnames:
        fieldnames = list(data[0].keys())

    if is_blob_url(filepath):
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
        write_to_blob(output.getvalue(), filepath)
        return

    with open(filepath, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(data)
    print(f"Wrote {filepath}")


def write_to_blob(body: str, blob_url: str) -> None:
    """Write a text body to Azure Blob Storage."""
    from azure.identity import DefaultAzureCredential
    from azure.storage.blob import BlobClient

    try:
        blob_client = BlobClient.from_blob_url(blob_url, credential=DefaultAzureCredential())
        blob_client.upload_blob(body, overwrite=True)
        print(f"Wrote {blob_url}")
    except Exception as e:
        print(f"ERROR: Failed to write to Azure Blob ({blob_url}): {e}")
        raise


def print_summary_table(summaries: List[Dict]) -> None:
    """Print a per-size summary table to console."""
    if not summaries:
        print("No virtual machines found.")
        return

    headers = ["VM Size", "Count", "vCPUs", "Memory (GiB)", "Disk (GiB)"]
    rows = []

    for s in summaries:
        rows.append([
            s.get("vm_size", ""),
            str(s.get("vm_count", 0)),
            str(s.get("total_cores", 0)),
            f"{s.get('total_memory_gb', 0):,.1f}",
            f"{s.get('total_disk_gb', 0):,.1f}",
        ])

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print("\n" + header_line)
    print(separator)

    for row in rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))

    totals = [
        "TOTAL",
        str(sum(s.get("vm_count", 0) for s in summaries)),
        str(sum(s.get("total_cores", 0) for s in summaries)),
        f"{sum(s.get('total_memory_gb', 0) for s in summaries):,.1f}",
        f"{sum(s.get('total_disk_gb', 0) for s in summaries):,.1f}",
    ]
    print(separator)
    print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(totals)))
    print()
