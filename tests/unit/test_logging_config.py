"""
Unit tests for logging setup.
"""

import logging

from rich.logging import RichHandler

from asmgr import logging_config
from asmgr.logging_config import (
    ROOT_LOGGER_NAME,
    StructuredLogger,
    get_logger,
    get_structured_logger,
    setup_logging,
    setup_tui_logging,
)


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def test_get_logger_is_namespaced():
    assert get_logger("store").name == "asmgr.store"


class TestSetupLogging:
    def test_console_stream_handler(self):
        root = setup_logging(level=logging.DEBUG)
        assert root.level == logging.DEBUG
        assert root.propagate is False
        assert [type(h) for h in root.handlers] == [logging.StreamHandler]

    def test_rich_console(self):
        root = setup_logging(rich_console=True)
        assert isinstance(root.handlers[0], RichHandler)

    def test_repeated_setup_replaces_handlers(self):
        setup_logging()
        root = setup_logging()
        assert len(root.handlers) == 1

    def test_file_logging(self, tmp_path):
        log_file = tmp_path / "logs" / "asmgr.log"
        setup_logging(log_file=log_file, console=False)
        get_logger("test").warning("written to disk")
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        assert "written to disk" in log_file.read_text()

    def test_tui_logging_is_file_only(self, tmp_path):
        setup_tui_logging(tmp_path / "tui.log", level=logging.INFO)
        handlers = logging.getLogger(ROOT_LOGGER_NAME).handlers
        assert [type(h) for h in handlers] == [logging.FileHandler]

    def test_tui_log_defaults_under_config_root(self, isolated_config_dir):
        setup_tui_logging(level=logging.INFO)
        handler = logging.getLogger(ROOT_LOGGER_NAME).handlers[0]
        assert handler.baseFilename == str(isolated_config_dir / "logs" / "asmgr.log")


class TestLevelFromEnv:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ASMGR_LOG_LEVEL", "debug")
        assert logging_config._level_from_env(logging.WARNING) == logging.DEBUG

    def test_unknown_level_keeps_default(self, monkeypatch):
        monkeypatch.setenv("ASMGR_LOG_LEVEL", "chatty")
        assert logging_config._level_from_env(logging.WARNING) == logging.WARNING

    def test_unset(self, monkeypatch):
        monkeypatch.delenv("ASMGR_LOG_LEVEL", raising=False)
        assert logging_config._level_from_env(logging.INFO) == logging.INFO


class TestStructuredLogger:
    def make(self):
        logger = logging.getLogger("asmgr.test.structured")
        logger.setLevel(logging.DEBUG)
        handler = ListHandler()
        logger.addHandler(handler)
        return StructuredLogger(logger), handler, logger

    def test_plain_message(self):
        slog, handler, logger = self.make()
        slog.info("hello")
        logger.removeHandler(handler)
        assert handler.messages == ["hello"]

    def test_context_and_fields(self):
        slog, handler, logger = self.make()
        slog.with_context(project="web").error("Command failed", command="start")
        logger.removeHandler(handler)
        assert handler.messages == ["Command failed project=web command=start"]

    def test_with_context_does_not_mutate_parent(self):
        slog, handler, logger = self.make()
        slog.with_context(a=1)
        slog.warning("bare")
        logger.removeHandler(handler)
        assert handler.messages == ["bare"]

    def test_factory(self):
        assert get_structured_logger("x")._logger.name == "asmgr.x"
