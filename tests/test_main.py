"""Tests for daemon wiring and structured logging."""

import json
import logging
import sys
from pathlib import Path

import pytest

from toolsync.config import EngineSettings
from toolsync.main import JsonFormatter, build_scheduler, main


def _record(msg: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="toolsync.engine",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_basic_fields(self) -> None:
        payload = json.loads(JsonFormatter().format(_record("Config unreadable")))

        assert payload["level"] == "WARNING"
        assert payload["message"] == "Config unreadable"
        assert payload["logger"] == "toolsync.engine"
        assert payload["timestamp"].endswith("Z")
        assert "msg" not in payload
        assert "args" not in payload

    def test_extra_fields_included(self) -> None:
        payload = json.loads(
            JsonFormatter().format(_record("Cycle failed", reason="interval", path=Path("/x")))
        )

        assert payload["reason"] == "interval"
        assert payload["path"] == "/x"

    def test_exception_included(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record("failed")
            record.exc_info = sys.exc_info()

        payload = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in payload["exception"]


class TestBuildScheduler:
    def test_wires_settings(self, tmp_path: Path) -> None:
        settings = EngineSettings(
            sync_root=tmp_path, cycle_interval_seconds=30, auto_apply=True, suppress_seconds=7
        )

        scheduler = build_scheduler(settings)

        assert scheduler.engine.layout.root == tmp_path
        assert scheduler.engine.connectors == {}


class TestMain:
    @pytest.mark.asyncio
    async def test_invalid_env_returns_error_code(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOOLSYNC_INTERVAL", "not-a-number")
        monkeypatch.setattr("toolsync.main.setup_logging", lambda level="INFO": None)

        assert await main() == 1
