"""Tests for utils/logging.py."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from datamachine.ai.agent_context import AgentType, agent_context
from datamachine.utils import logging as dm_logging


def _record() -> logging.LogRecord:
    return logging.LogRecord("datamachine.test", logging.INFO, __file__, 1, "hello", None, None)


@pytest.fixture
def restore_root_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    root = logging.getLogger()
    level = root.level
    monkeypatch.setattr(dm_logging, "_CONFIGURED", False)
    monkeypatch.setattr(dm_logging, "_LOG_PATH", None)
    yield
    for handler in list(root.handlers):
        if any(isinstance(item, dm_logging.AgentContextFilter) for item in handler.filters):
            root.removeHandler(handler)
            handler.close()
    for name in dm_logging._NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)
    root.setLevel(level)
    logging.captureWarnings(False)


class TestAgentContextFilter:
    """The filter tags records with the active agent."""

    def test_outside_any_agent(self) -> None:
        record = _record()

        assert dm_logging.AgentContextFilter().filter(record)
        assert record.agent == "-"

    def test_pipeline_agent(self) -> None:
        record = _record()

        with agent_context(AgentType.PIPELINE, "ai"):
            dm_logging.AgentContextFilter().filter(record)

        assert record.agent == "pipeline:ai"

    def test_chat_agent(self) -> None:
        record = _record()

        with agent_context(AgentType.CHAT):
            dm_logging.AgentContextFilter().filter(record)

        assert record.agent == "chat"


@pytest.mark.usefixtures("restore_root_logging")
class TestSetupLogging:
    """Tests for setup_logging."""

    def test_writes_tagged_records(self, tmp_path: Path) -> None:
        log_path = dm_logging.setup_logging(log_dir=tmp_path, console=False)

        with agent_context(AgentType.PIPELINE, "ai"):
            dm_logging.get_logger("datamachine.test").info("turn finished")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_path == tmp_path / "datamachine.log"
        assert dm_logging.get_log_path() == log_path
        line = log_path.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert "| INFO     | pipeline:ai | datamachine.test | turn finished" in line

    def test_second_call_is_a_no_op(self, tmp_path: Path) -> None:
        first = dm_logging.setup_logging(log_dir=tmp_path / "a", console=False)

        second = dm_logging.setup_logging(log_dir=tmp_path / "b", console=False)

        assert second == first
        assert not (tmp_path / "b").exists()

    def test_environment_log_dir(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("DATAMACHINE_LOG_DIR", str(tmp_path / "env"))

        log_path = dm_logging.setup_logging(console=False)

        assert log_path == tmp_path / "env" / "datamachine.log"

    def test_noisy_loggers_quieted(self, tmp_path: Path) -> None:
        dm_logging.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False)

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("openai").level == logging.WARNING
