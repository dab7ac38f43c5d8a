"""
Tests for vmassess/utils.py utility functions.

Covers:
- generate_run_id format and uniqueness
- get_timestamp format
- safe_filename and is_blob_url
- write_json and write_csv (local files)
- print_summary_table formatting
- retry_with_backoff decorator, including auth errors
- AuthError and is_auth_error detection
- check_and_raise_auth_error
- parallel_map ordering
- ProgressTracker counters
"""
import json
import logging
import os
import stat
import sys
import tempfile
import time

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vmassess.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    generate_run_id,
    get_timestamp,
    is_auth_error,
    is_blob_url,
    parallel_map,
    print_summary_table,
    retry_with_backoff,
    safe_filename,
    setup_logging,
    write_csv,
    write_json,
)


class HttpResponseError(Exception):
    """Mimics azure.core.exceptions.HttpResponseError."""
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ClientAuthenticationError(Exception):
    """Mimics azure.core.exceptions.ClientAuthenticationError."""
    status_code = None


# =============================================================================
# generate_run_id Tests
# =============================================================================

class TestGenerateRunId:
    """Tests for generate_run_id function."""

    def test_run_id_format(self):
        """Test run ID has correct format: YYYYMMDD-HHMMSS-xxxxxxxx"""
        parts = generate_run_id().split('-')

        assert len(parts) == 3
        assert len(parts[0]) == 8 and parts[0].isdigit()
        assert len(parts[1]) == 6 and parts[1].isdigit()
        assert len(parts[2]) == 8

    def test_run_id_uniqueness(self):
        """Test that multiple run IDs are unique."""
        ids = [generate_run_id() for _ in range(100)]
        assert len(set(ids)) == 100


# =============================================================================
# get_timestamp Tests
# =============================================================================

class TestGetTimestamp:
    """Tests for get_timestamp function."""

    def test_timestamp_is_utc(self):
        timestamp = get_timestamp()
        assert timestamp.endswith('Z')
        assert 'T' in timestamp


# =============================================================================
# File Name Tests
# =============================================================================

class TestFileNames:
    """Tests for safe_filename and is_blob_url."""

    def test_safe_filename(self):
        assert safe_filename("Prod / EU") == "Prod_EU"
        assert safe_filename("dev-sub.01") == "dev-sub.01"

    def test_safe_filename_default(self):
        assert safe_filename("") == "unnamed"
        assert safe_filename("///") == "unnamed"
        assert safe_filename(None, "sub") == "sub"

    def test_is_blob_url(self):
        assert is_blob_url("https://acct.blob.core.windows.net/container/run")
        assert not is_blob_url("./assessments")
        assert not is_blob_url("https://example.com/container")


# =============================================================================
# write_json Tests
# =============================================================================

class TestWriteJson:
    """Tests for write_json function."""

    def test_write_local_file(self):
        """Test writing JSON to local file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            filepath = f.name

        try:
            data = {"key": "value", "nested": {"list": [1, 2, 3]}, "null": None}
            write_json(data, filepath)

            with open(filepath) as f:
                loaded = json.load(f)

            assert loaded == data
        finally:
            os.unlink(filepath)

    def test_owner_only_permissions(self, tmp_path):
        filepath = tmp_path / "summary.json"
        write_json({"a": 1}, str(filepath))
        mode = os.stat(filepath).st_mode
        assert not mode & (stat.S_IRWXG | stat.S_IRWXO)


# =============================================================================
# write_csv Tests
# =============================================================================

class TestWriteCsv:
    """Tests for write_csv function."""

    def test_write_local_file(self, tmp_path):
        """Test writing CSV to local file."""
        filepath = tmp_path / "inventory.csv"
        data = [
            {"vm_name": "vm-001", "cores": 2},
            {"vm_name": "vm-002", "cores": "N/A"},
        ]
        write_csv(data, str(filepath))

        content = filepath.read_text()
        assert "vm_name,cores" in content
        assert "vm-001,2" in content
        assert "vm-002,N/A" in content

    def test_write_empty_data(self, tmp_path):
        """Test writing empty data does nothing."""
        filepath = tmp_path / "empty.csv"
        write_csv([], str(filepath))
        assert not filepath.exists()

    def test_custom_fieldnames(self, tmp_path):
        """Test writing CSV with custom fieldnames keeps the given order."""
        filepath = tmp_path / "ordered.csv"
        write_csv([{"a": 1, "b": 2}], str(filepath), fieldnames=["b", "a"])

        lines = filepath.read_text().splitlines()
        assert lines[0] == "b,a"
        assert lines[1] == "2,1"


# =============================================================================
# print_summary_table Tests
# =============================================================================

class TestPrintSummaryTable:
    """Tests for print_summary_table function."""

    def test_prints_rows_and_total(self, capsys):
        print_summary_table([
            {"vm_size": "Standard_D2s_v3", "vm_count": 2, "total_cores": 4,
             "total_memory_gb": 16.0, "total_disk_gb": 60.0},
            {"vm_size": "Standard_E4s_v3", "vm_count": 1, "total_cores": 4,
             "total_memory_gb": 32.0, "total_disk_gb": 128.0},
        ])
        output = capsys.readouterr().out

        assert "VM Size" in output
        assert "Standard_D2s_v3" in output
        total_line = [line for line in output.splitlines() if line.startswith("TOTAL")][0]
        assert "3" in total_line
        assert "48.0" in total_line
        assert "188.0" in total_line

    def test_empty(self, capsys):
        print_summary_table([])
        assert "No virtual machines found." in capsys.readouterr().out


# =============================================================================
# retry_with_backoff Tests
# =============================================================================

class TestRetryWithBackoff:
    """Tests for retry_with_backoff decorator."""

    def test_no_retry_on_success(self):
        """Test function not retried when it succeeds."""
        call_count = 0

        @retry_with_backoff(max_attempts=3)
        def successful_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert successful_func() == "success"
        assert call_count == 1

    def test_retry_on_failure(self):
        """Test function is retried on failure."""
        call_count = 0

        @retry_with_backoff(max_attempts=3, min_wait=0.01, max_wait=0.1)
        def failing_func():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("Not yet")
            return "success"

        assert failing_func() == "success"
        assert call_count == 3

    def test_max_attempts_exceeded(self):
        """Test exception raised when max attempts exceeded."""
        call_count = 0

        @retry_with_backoff(max_attempts=2, min_wait=0.01, max_wait=0.1)
        def always_fails():
            nonlocal call_count
            call_count += 1
            raise ConnectionError("Always fails")

        with pytest.raises(ConnectionError, match="Always fails"):
            always_fails()

        assert call_count == 2

    def test_specific_exception_types(self):
        """Test retry only on specified exception types."""
        call_count = 0

        @retry_with_backoff(max_attempts=3, exceptions=(ValueError,), min_wait=0.01)
        def specific_error():
            nonlocal call_count
            call_count += 1
            raise TypeError("Not retryable")

        with pytest.raises(TypeError):
            specific_error()

        assert call_count == 1

    def test_auth_errors_not_retried(self):
        """Test a 403 fails on the first attempt."""
        call_count = 0

        @retry_with_backoff(max_attempts=3, min_wait=0.01)
        def forbidden():
            nonlocal call_count
            call_count += 1
            raise HttpResponseError("Forbidden", status_code=403)

        with pytest.raises(HttpResponseError):
            forbidden()

        assert call_count == 1


# =============================================================================
# Auth Error Tests
# =============================================================================

class TestAuthErrors:
    """Tests for AuthError detection."""

    def test_auth_error_instance(self):
        assert is_auth_error(AuthError("denied"))

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_http_auth_status(self, status_code):
        assert is_auth_error(HttpResponseError("Request failed", status_code=status_code))

    def test_http_other_status(self):
        assert not is_auth_error(HttpResponseError("Throttled", status_code=429))

    def test_message_mentions_authorization(self):
        """Test errors without a status are matched on their message."""
        assert is_auth_error(HttpResponseError("AuthorizationFailed: no access"))
        assert is_auth_error(ClientAuthenticationError("Authentication failed"))

    def test_plain_exception(self):
        assert not is_auth_error(Exception("authentication failed"))
        assert not is_auth_error(ValueError("bad value"))

    def test_check_and_raise_wraps(self):
        original = HttpResponseError("Forbidden", status_code=403)

        with pytest.raises(AuthError) as exc_info:
            check_and_raise_auth_error(original, "list VMs")

        assert "list VMs" in str(exc_info.value)
        assert exc_info.value.provider == "azure"
        assert exc_info.value.original_error is original

    def test_check_and_raise_passes_auth_error_through(self):
        error = AuthError("denied")
        with pytest.raises(AuthError) as exc_info:
            check_and_raise_auth_error(error, "list disks")
        assert exc_info.value is error

    def test_check_and_raise_ignores_other_errors(self):
        """Test non-auth errors return so the caller can handle them."""
        check_and_raise_auth_error(ConnectionError("reset"), "list disks")


# =============================================================================
# parallel_map Tests
# =============================================================================

class TestParallelMap:
    """Tests for parallel_map utility."""

    def test_serial(self):
        assert parallel_map(lambda x: x * 2, [1, 2, 3]) == [2, 4, 6]

    def test_parallel_keeps_input_order(self):
        """Test results follow input order, not completion order."""
        def slow_first(x):
            time.sleep(0.05 if x == 0 else 0)
            return x

        assert parallel_map(slow_first, list(range(8)), parallel_workers=4) == list(range(8))

    def test_parallel_propagates_errors(self):
        def fails_on_two(x):
            if x == 2:
                raise RuntimeError("boom")
            return x

        with pytest.raises(RuntimeError, match="boom"):
            parallel_map(fails_on_two, [1, 2, 3], parallel_workers=3)

    def test_empty(self):
        assert parallel_map(lambda x: x, [], parallel_workers=4) == []


# =============================================================================
# ProgressTracker Tests
# =============================================================================

class TestProgressTracker:
    """Tests for ProgressTracker in plain (non-TTY) mode."""

    def test_counters(self, capsys):
        with ProgressTracker("Azure VM", total_subscriptions=2, show_progress=False) as tracker:
            tracker.start_subscription("sub-1", "One")
            tracker.add_vms(3, 120.5)
            tracker.complete_subscription()
            tracker.start_subscription("sub-2")
            tracker.complete_subscription(failed=True)

        assert tracker.completed_subscriptions == 2
        assert tracker.failed_subscriptions == 1
        assert tracker.total_vms == 3
        assert tracker.total_disk_gb == 120.5

        output = capsys.readouterr().out
        assert "Subscription: One (sub-1)" in output
        assert "Azure VM Assessment Complete" in output


# =============================================================================
# setup_logging Tests
# =============================================================================

class TestSetupLogging:
    """Tests for setup_logging function."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_level_is_case_insensitive(self):
        setup_logging("debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_azure_logger_quieted(self):
        setup_logging("DEBUG")
        assert logging.getLogger('azure').level == logging.WARNING

    def test_log_file_written(self, tmp_path):
        setup_logging("INFO", output_dir=str(tmp_path))
        logging.getLogger("vmassess.test").info("hello")

        log_files = [f for f in os.listdir(tmp_path) if f.startswith("vma_log_")]
        assert len(log_files) == 1
