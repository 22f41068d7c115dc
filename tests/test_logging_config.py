"""Test unified logging configuration.

Tests for src.utils.logging_config:
    - setup_logging is idempotent (no duplicate handlers)
    - JSON and human formats carry contextual fields
    - push/pop/log_context manage the contextvars state
    - Reconfiguring replaces the previous context
    - File handler writes records

Run:
    pytest tests/test_logging_config.py -v
"""

import json
import logging
import logging.handlers

import pytest

from src.utils.logging_config import (
    ContextFormatter,
    log_context,
    pop_context,
    push_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _clean_context():
    pop_context()
    yield
    pop_context()


def _record(msg="hello", level=logging.INFO):
    return logging.LogRecord("mat_calibration.test", level, __file__, 1, msg, None, None)


def test_setup_is_idempotent():
    root = logging.getLogger()
    first = setup_logging("INFO", capture_warnings=False)
    second = setup_logging("DEBUG", capture_warnings=False)
    assert len(first) == len(second) == 1
    assert first[0] not in root.handlers
    assert second[0] in root.handlers
    assert root.level == logging.DEBUG


def test_unknown_level_rejected():
    with pytest.raises(ValueError, match="Unknown log level"):
        setup_logging("LOUD")


def test_file_handler(tmp_path):
    log_file = tmp_path / "logs" / "calibrate.log"
    handlers = setup_logging("INFO", str(log_file), to_stderr=False, capture_warnings=False)
    logging.getLogger("mat_calibration.test").info("written to file")
    for handler in handlers:
        handler.flush()
    assert "written to file" in log_file.read_text()


def test_rotating_file_handler(tmp_path):
    log_file = tmp_path / "rot.log"
    handlers = setup_logging(
        "INFO", str(log_file), to_stderr=False, capture_warnings=False,
        rotate={"mode": "size", "max_bytes": 1000, "backup_count": 1},
    )
    assert isinstance(handlers[0], logging.handlers.RotatingFileHandler)


def test_bad_rotation_mode(tmp_path):
    with pytest.raises(ValueError, match="rotation mode"):
        setup_logging("INFO", str(tmp_path / "x.log"), rotate={"mode": "weekly"})


def test_json_format_includes_context():
    push_context(app="calibrate", step="PLACE_HEAD")
    line = ContextFormatter("json", use_color=False).format(_record())
    payload = json.loads(line)
    assert payload["msg"] == "hello"
    assert payload["lvl"] == "INFO"
    assert payload["app"] == "calibrate"
    assert payload["step"] == "PLACE_HEAD"


def test_human_format_includes_context():
    push_context(app="calibrate")
    line = ContextFormatter("human", use_color=False).format(_record("tick"))
    assert "| app=calibrate |" in line
    assert line.endswith("tick")


def test_unknown_format_mode():
    with pytest.raises(ValueError):
        ContextFormatter("xml")


def _context_of(msg="x"):
    return json.loads(ContextFormatter("json", use_color=False).format(_record(msg)))


def test_context_helpers():
    push_context(a=1, b=2)
    pop_context(["a"])
    payload = _context_of()
    assert "a" not in payload and payload["b"] == 2
    with log_context(tracker=3):
        assert _context_of()["tracker"] == 3
    assert "tracker" not in _context_of()


def test_reconfigure_replaces_context():
    setup_logging("INFO", to_stderr=False, capture_warnings=False, context={"app": "first"})
    push_context(step="RECORD_HEAD")
    setup_logging("INFO", to_stderr=False, capture_warnings=False, context={"app": "second"})
    payload = _context_of()
    assert payload["app"] == "second"
    assert "step" not in payload
