import logging

import pytest

from app_logging import setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("stream_source").setLevel(logging.NOTSET)


def test_setup_logging_level_and_module_overrides(monkeypatch, restore_logging):
    monkeypatch.delenv("GOTIFY_LOG_FILE", raising=False)
    monkeypatch.setenv("GOTIFY_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("GOTIFY_LOG_MODULE_LEVELS", "stream_source=DEBUG,broken")

    root = setup_logging()
    assert root.level == logging.WARNING
    assert logging.getLogger("stream_source").level == logging.DEBUG
    assert logging.getLogger("urllib3").level == logging.WARNING


def test_explicit_level_beats_env(monkeypatch, restore_logging):
    monkeypatch.delenv("GOTIFY_LOG_FILE", raising=False)
    monkeypatch.delenv("GOTIFY_LOG_MODULE_LEVELS", raising=False)
    monkeypatch.setenv("GOTIFY_LOG_LEVEL", "ERROR")
    assert setup_logging("DEBUG").level == logging.DEBUG


def test_log_file_handler_is_added(tmp_path, monkeypatch, restore_logging):
    log_file = tmp_path / "logs" / "player.log"
    monkeypatch.setenv("GOTIFY_LOG_FILE", str(log_file))
    monkeypatch.delenv("GOTIFY_LOG_MODULE_LEVELS", raising=False)

    root = setup_logging("INFO")
    logging.getLogger("playback_controller").info("hello")
    for h in root.handlers:
        h.flush()
    assert "hello" in log_file.read_text(encoding="utf-8")
