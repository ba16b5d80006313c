"""
Tests for structured logging setup.
"""

import io
import json
import logging

import pytest

from stakeflow_core.logging_config import (
    _HumanFormatter,
    _JSONFormatter,
    set_level,
    setup_logging,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("stakeflow_engine", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestFormatters:
    def test_json_basic_fields(self):
        data = json.loads(_JSONFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "stakeflow_engine"
        assert data["msg"] == "hello"
        assert "op" not in data

    def test_json_context_fields(self):
        out = _JSONFormatter().format(
            _record(op="stake", caller="sfAlice", amount=10 ** 24)
        )
        data = json.loads(out)
        assert data["op"] == "stake"
        assert data["caller"] == "sfAlice"
        assert data["amount"] == 10 ** 24

    def test_human_format_tags_op(self):
        line = _HumanFormatter().format(_record(op="unstake"))
        assert "<unstake>" in line
        assert "hello" in line

    def test_human_format_shows_context(self):
        line = _HumanFormatter().format(_record(op="stake", caller="sfAlice", amount=5))
        assert "<stake> caller=sfAlice amount=5: hello" in line
        assert "\033[" not in line

    def test_human_colour(self):
        line = _HumanFormatter(colour=True).format(_record())
        assert line.startswith("\033[32m")


class TestSetup:
    def test_setup_json(self):
        setup_logging(level="DEBUG", fmt="json")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, _JSONFormatter)

    def test_setup_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "stakeflow.log"
        setup_logging(level="INFO", fmt="human", log_file=str(log_file))
        root = logging.getLogger()
        assert len(root.handlers) == 2
        logging.getLogger("stakeflow_engine").info("written", extra={"op": "claim_rewards"})
        for handler in root.handlers:
            handler.flush()
        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["op"] == "claim_rewards"
        root.handlers[1].close()

    def test_setup_twice_no_duplicates(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_setup_writes_to_stream(self):
        out = io.StringIO()
        setup_logging(level="INFO", fmt="human", stream=out)
        logging.getLogger("stakeflow_api").info("served", extra={"op": "claim_rewards"})
        line = out.getvalue().strip()
        assert "stakeflow_api <claim_rewards>: served" in line
        assert "\033[" not in line

    def test_setup_rejects_unknown_values(self):
        with pytest.raises(ValueError):
            setup_logging(fmt="xml")
        with pytest.raises(ValueError):
            setup_logging(level="chatty")


class TestSetLevel:
    def test_change_level(self):
        assert set_level("warning") == "WARNING"
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            set_level("chatty")
