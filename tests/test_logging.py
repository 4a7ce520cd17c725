"""Tests for logging module."""
import logging
import os
import sys
import tempfile
import threading
from logging.handlers import TimedRotatingFileHandler
from unittest.mock import patch

import pytest

from grower import logging as grower_logging
from grower.logging import _int_env, _NonErrorFilter, _pick_logs_dir, setup_logging


class TestIntEnv:
    """Tests for _int_env helper function."""

    def test_int_env_default(self):
        """Test _int_env returns default when var not set."""
        with patch.dict(os.environ, {}, clear=True):
            assert _int_env("NONEXISTENT_VAR", 42) == 42

    def test_int_env_valid_value(self):
        """Test _int_env parses valid integer."""
        with patch.dict(os.environ, {"TEST_VAR": "100"}):
            assert _int_env("TEST_VAR", 42) == 100

    def test_int_env_invalid_value(self):
        """Test _int_env returns default for invalid value."""
        with patch.dict(os.environ, {"TEST_VAR": "not_a_number"}):
            assert _int_env("TEST_VAR", 42) == 42

    def test_int_env_empty_value(self):
        """Test _int_env returns default for empty value."""
        with patch.dict(os.environ, {"TEST_VAR": ""}):
            assert _int_env("TEST_VAR", 42) == 42


class TestPickLogsDir:
    """Tests for _pick_logs_dir function."""

    def test_pick_logs_dir_explicit_env(self):
        """Test _pick_logs_dir uses GROWER_LOG_DIR when set."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {"GROWER_LOG_DIR": tmpdir}):
                assert _pick_logs_dir() == tmpdir

    def test_pick_logs_dir_creates_directory(self):
        """Test _pick_logs_dir creates directory if needed."""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_dir = os.path.join(tmpdir, "new_logs")
            with patch.dict(os.environ, {"GROWER_LOG_DIR": log_dir}):
                assert _pick_logs_dir() == log_dir
                assert os.path.isdir(log_dir)

    def test_pick_logs_dir_fallback_when_unwritable(self):
        """Test _pick_logs_dir falls back when a candidate cannot be created."""
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = os.path.join(tmpdir, "file")
            with open(blocker, "w", encoding="utf-8"):
                pass
            # A path below a regular file can never be a directory
            bad = os.path.join(blocker, "logs")
            with patch.dict(os.environ, {"GROWER_LOG_DIR": bad}):
                result = _pick_logs_dir()
                assert result != bad
                assert os.path.isdir(result)

    def test_pick_logs_dir_cwd_fallback(self):
        """Test _pick_logs_dir uses cwd/logs when no override is set."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {}, clear=False):
                os.environ.pop("GROWER_LOG_DIR", None)
                with patch("os.getcwd", return_value=tmpdir):
                    assert _pick_logs_dir() == os.path.join(tmpdir, "logs")


class TestNonErrorFilter:
    def test_filters_errors_out(self):
        f = _NonErrorFilter()
        info = logging.LogRecord("x", logging.INFO, __file__, 1, "m", None, None)
        error = logging.LogRecord("x", logging.ERROR, __file__, 1, "m", None, None)
        assert f.filter(info)
        assert not f.filter(error)


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        excepthook, thread_hook = sys.excepthook, threading.excepthook
        saved_orig = grower_logging._orig_excepthook
        yield
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)
        sys.excepthook, threading.excepthook = excepthook, thread_hook
        grower_logging._orig_excepthook = saved_orig

    def test_setup_logging_handlers(self):
        """Test the console, app and error handlers are installed."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {"GROWER_LOG_DIR": tmpdir}):
                logs_dir = setup_logging("debug")

            root = logging.getLogger()
            assert logs_dir == tmpdir
            assert root.level == logging.DEBUG
            files = sorted(
                os.path.basename(h.baseFilename) for h in root.handlers if isinstance(h, TimedRotatingFileHandler)
            )
            assert files == ["errors.log", "grower.log"]
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()

    def test_setup_logging_routes_errors(self):
        """Test errors land in errors.log and not in the app log."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict(os.environ, {"GROWER_LOG_DIR": tmpdir, "GROWER_LOG_FORMAT": "%(levelname)s %(message)s"}):
                setup_logging("INFO")

            log = logging.getLogger("grower.test")
            log.info("fight resolved")
            log.error("settlement failed")
            root = logging.getLogger()
            for handler in root.handlers:
                handler.flush()

            with open(os.path.join(tmpdir, "grower.log"), encoding="utf-8") as f:
                app_text = f.read()
            with open(os.path.join(tmpdir, "errors.log"), encoding="utf-8") as f:
                error_text = f.read()

            assert "INFO fight resolved" in app_text
            assert "settlement failed" not in app_text
            assert "ERROR settlement failed" in error_text
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()

    def test_setup_logging_installs_excepthook(self):
        """Test unhandled exceptions are logged before the original hook runs."""
        calls = []
        grower_logging._orig_excepthook = None
        with patch.object(sys, "excepthook", lambda *a: calls.append(a)):
            with tempfile.TemporaryDirectory() as tmpdir:
                with patch.dict(os.environ, {"GROWER_LOG_DIR": tmpdir}):
                    setup_logging("INFO")
                with patch.object(logging.getLogger("unhandled"), "error") as mock_error:
                    err = ValueError("boom")
                    sys.excepthook(ValueError, err, None)
                    mock_error.assert_called_once()
                root = logging.getLogger()
                for handler in list(root.handlers):
                    root.removeHandler(handler)
                    handler.close()
        assert calls and calls[0][1] is err
