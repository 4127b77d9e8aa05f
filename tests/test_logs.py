"""Tests for logging setup and panic isolation."""

import logging
import threading

import pytest

from steelclock.core import logs


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestGuarded:
    def test_swallows_and_records(self, tmp_path):
        logs.set_panic_log(tmp_path / "panic.log")
        with logs.guarded("widget clock"):
            raise RuntimeError("boom")

        report = (tmp_path / "panic.log").read_text()
        assert "panic in widget clock: RuntimeError('boom')" in report
        assert "Traceback" in report

    def test_appends(self, tmp_path):
        logs.set_panic_log(tmp_path / "panic.log")
        for name in ("a", "b"):
            with logs.guarded(name):
                raise ValueError(name)
        report = (tmp_path / "panic.log").read_text()
        assert report.count("panic in") == 2

    def test_no_error_writes_nothing(self, tmp_path):
        logs.set_panic_log(tmp_path / "panic.log")
        with logs.guarded("quiet"):
            pass
        assert not (tmp_path / "panic.log").exists()

    def test_crashing_thread_does_not_affect_others(self, tmp_path):
        logs.set_panic_log(tmp_path / "panic.log")
        done = threading.Event()

        def crash():
            with logs.guarded("crasher"):
                raise RuntimeError("thread crash")

        def worker():
            with logs.guarded("worker"):
                done.set()

        threads = [threading.Thread(target=crash), threading.Thread(target=worker)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(2.0)

        assert done.is_set()
        assert "crasher" in (tmp_path / "panic.log").read_text()

    def test_without_panic_file_only_logs(self, caplog):
        logs.set_panic_log(None)
        with logs.guarded("nowhere"):
            raise RuntimeError("lost")
        assert any("Panic in nowhere" in r.getMessage() for r in caplog.records)


class TestSetupLogging:
    def test_file_and_panic_paths(self, tmp_path, restore_root_logger):
        logs.setup_logging(tmp_path, "DEBUG")
        logging.getLogger("steelclock.test").info("to file")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert restore_root_logger.level == logging.DEBUG
        assert "to file" in (tmp_path / logs.LOG_FILENAME).read_text()
        assert logs.get_panic_log() == tmp_path / logs.PANIC_FILENAME
        assert logging.getLogger("apscheduler").level == logging.WARNING

    def test_console_handler(self, tmp_path, restore_root_logger):
        before = len(restore_root_logger.handlers)
        logs.setup_logging(tmp_path, "INFO", console=True)
        assert len(restore_root_logger.handlers) == before + 2

    def test_no_dir_logs_to_console(self, restore_root_logger):
        before = len(restore_root_logger.handlers)
        logs.setup_logging(None, "WARNING")
        assert len(restore_root_logger.handlers) == before + 1
        assert restore_root_logger.level == logging.WARNING
