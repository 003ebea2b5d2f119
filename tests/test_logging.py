import json
import logging

import pytest

from gpplus.core import logging as gp_logging
from gpplus.core.logging import JsonFormatter, UnifiedFormatter, setup_unified_logging


def _record(msg, **extra):
    record = logging.LogRecord("gpplus.voice", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_unified_formatter_appends_context():
    line = UnifiedFormatter().format(_record("voice_begin", session_id="abc", cycle=2))

    assert "[GPPlus] [INFO] [gpplus.voice] voice_begin" in line
    assert line.endswith("| session_id=abc cycle=2")


def test_json_formatter_flattens_event_dicts():
    payload = json.loads(JsonFormatter(fmt="%(message)s").format(_record({"event": "voice_begin", "cycle": 1}, session_id="abc")))

    assert payload["event"] == "voice_begin"
    assert payload["cycle"] == 1
    assert payload["session_id"] == "abc"
    assert payload["service"] == "gpplus"
    assert payload["level"] == "INFO"


def test_setup_switches_formatter_and_adds_file_handler(tmp_path, restore_root_logger):
    setup_unified_logging(level="DEBUG", log_format="json", log_dir=str(tmp_path))

    handlers = restore_root_logger.handlers
    assert restore_root_logger.level == logging.DEBUG
    assert len(handlers) == 2
    assert all(isinstance(handler.formatter, JsonFormatter) for handler in handlers)
    assert (tmp_path / gp_logging.LOG_FILE_NAME).exists()
    for handler in handlers:
        handler.close()


def test_setup_text_format_console_only(restore_root_logger):
    setup_unified_logging(level="WARNING", log_format="text", log_dir="")

    assert len(restore_root_logger.handlers) == 1
    assert isinstance(restore_root_logger.handlers[0].formatter, UnifiedFormatter)
