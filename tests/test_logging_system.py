"""Tests for the logging module: models, EngineLogger, ComponentLogger."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from postflow.logging import (
    ComponentLogger,
    EngineLogger,
    LogComponent,
    LogEntry,
    LogLevel,
    get_logger,
    init_logger,
    reset_logger,
)


# ---------------------------------------------------------------------------
# Fixed timestamp used across all tests for determinism
# ---------------------------------------------------------------------------
FIXED_TS = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine_logger(tmp_path):
    return EngineLogger(log_dir=str(tmp_path / "logs"))


@pytest.fixture(autouse=True)
def _reset_global_logger():
    reset_logger()
    yield
    reset_logger()


def read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


# ===================================================================
# Models
# ===================================================================


class TestLogLevel:
    """Verify LogLevel values and name parsing."""

    def test_severity_order(self) -> None:
        values = [level.value for level in LogLevel]
        assert values == sorted(values)

    def test_name_str_is_lowercase(self) -> None:
        assert LogLevel.WARNING.name_str == "warning"

    @pytest.mark.parametrize("name", ["info", "INFO", " Info "])
    def test_from_name(self, name) -> None:
        assert LogLevel.from_name(name) is LogLevel.INFO

    def test_from_name_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            LogLevel.from_name("verbose")


class TestLogEntry:
    def _entry(self, **kwargs) -> LogEntry:
        return LogEntry(
            timestamp=FIXED_TS,
            level=kwargs.pop("level", LogLevel.INFO),
            component=LogComponent.SCHEDULER,
            message="Published",
            **kwargs,
        )

    def test_to_dict(self) -> None:
        d = self._entry(job_id="j1", data={"attempt": 1}).to_dict()
        assert d["timestamp"] == "2025-01-01T12:00:00+00:00"
        assert d["level"] == 20
        assert d["level_name"] == "info"
        assert d["component"] == "scheduler"
        assert d["job_id"] == "j1"
        assert d["data"] == {"attempt": 1}

    def test_to_json_handles_datetimes_in_data(self) -> None:
        payload = json.loads(self._entry(data={"retry_at": FIXED_TS}).to_json())
        assert payload["data"]["retry_at"] == str(FIXED_TS)

    def test_to_readable(self) -> None:
        text = self._entry(level=LogLevel.WARNING, job_id="j1", duration_ms=42).to_readable()
        assert text == "[WARN] [12:00:00] [scheduler] Published job=j1 (42ms)"


# ===================================================================
# EngineLogger
# ===================================================================


class TestEngineLogger:
    @pytest.mark.asyncio
    async def test_writes_events_log(self, engine_logger, tmp_path):
        await engine_logger.info(LogComponent.SCHEDULER, "Published", job_id="j1")

        lines = read_lines(tmp_path / "logs" / "events.log")
        assert len(lines) == 1
        assert lines[0]["message"] == "Published"
        assert lines[0]["job_id"] == "j1"

    @pytest.mark.asyncio
    async def test_errors_also_go_to_errors_log(self, engine_logger, tmp_path):
        await engine_logger.info(LogComponent.SCHEDULER, "fine")
        await engine_logger.error(LogComponent.PUBLISHER, "broken", error=RuntimeError("x"))

        errors = read_lines(tmp_path / "logs" / "errors.log")
        assert [e["message"] for e in errors] == ["broken"]
        assert errors[0]["error_type"] == "RuntimeError"
        assert "RuntimeError: x" in errors[0]["error_traceback"]

    @pytest.mark.asyncio
    async def test_debug_goes_to_debug_log(self, engine_logger, tmp_path):
        await engine_logger.debug(LogComponent.STORE, "query")
        assert read_lines(tmp_path / "logs" / "debug.log")[0]["message"] == "query"
        assert not (tmp_path / "logs" / "errors.log").exists()

    @pytest.mark.asyncio
    async def test_get_recent_filters(self, engine_logger):
        await engine_logger.info(LogComponent.SCHEDULER, "a", job_id="j1")
        await engine_logger.warning(LogComponent.RESCHEDULE, "b", job_id="j2")
        await engine_logger.info(LogComponent.SCHEDULER, "c", job_id="j1")

        assert [e.message for e in engine_logger.get_recent()] == ["a", "b", "c"]
        assert [e.message for e in engine_logger.get_recent(limit=1)] == ["c"]
        assert [e.message for e in engine_logger.get_recent(level=LogLevel.WARNING)] == ["b"]
        assert [e.message for e in engine_logger.get_recent(component=LogComponent.SCHEDULER)] == ["a", "c"]
        assert [e.message for e in engine_logger.get_recent(job_id="j2")] == ["b"]

    @pytest.mark.asyncio
    async def test_ring_buffer_is_bounded(self, tmp_path):
        small = EngineLogger(log_dir=str(tmp_path), max_recent=2)
        for i in range(5):
            await small.info(LogComponent.SCHEDULER, f"m{i}")
        assert [e.message for e in small.get_recent(limit=10)] == ["m3", "m4"]

    @pytest.mark.asyncio
    async def test_supabase_write_respects_min_level(self, tmp_path):
        client = MagicMock()
        client.insert = AsyncMock(return_value={})
        log = EngineLogger(log_dir=str(tmp_path), supabase_client=client, min_level=LogLevel.WARNING)

        await log.info(LogComponent.SCHEDULER, "quiet")
        await log.warning(LogComponent.SCHEDULER, "loud", job_id="j1")
        await log.flush()

        client.insert.assert_awaited_once()
        table, row = client.insert.call_args.args
        assert table == "posting_logs"
        assert row["message"] == "loud"

    @pytest.mark.asyncio
    async def test_supabase_failure_does_not_raise(self, tmp_path):
        client = MagicMock()
        client.insert = AsyncMock(side_effect=ConnectionError("offline"))
        log = EngineLogger(log_dir=str(tmp_path), supabase_client=client)

        await log.error(LogComponent.STORE, "save failed")
        await log.flush()

        assert len(log.get_recent()) == 1


class TestGlobalLogger:
    def test_get_logger_before_init_raises(self):
        with pytest.raises(RuntimeError, match="init_logger"):
            get_logger()

    def test_init_registers_singleton(self, tmp_path):
        created = init_logger(log_dir=str(tmp_path))
        assert get_logger() is created

    def test_min_level_from_setting_name(self, tmp_path):
        assert init_logger(log_dir=str(tmp_path), min_level="warning").min_level is LogLevel.WARNING

    def test_unknown_level_name_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="verbose"):
            init_logger(log_dir=str(tmp_path), min_level="verbose")


# ===================================================================
# ComponentLogger
# ===================================================================


class TestComponentLogger:
    @pytest.mark.asyncio
    async def test_binds_component(self, engine_logger):
        events = ComponentLogger(LogComponent.RESCHEDULE, engine_logger)

        entry = await events.warning("Slot taken", job_id="j1")

        assert entry.component is LogComponent.RESCHEDULE
        assert entry.level is LogLevel.WARNING

    @pytest.mark.asyncio
    async def test_falls_back_to_global_logger(self, tmp_path):
        init_logger(log_dir=str(tmp_path))
        events = ComponentLogger(LogComponent.STARTUP)

        await events.info("Engine started")

        assert get_logger().get_recent()[0].message == "Engine started"

