"""Tests for the audit sinks and the failure-tolerant writer."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from termgate.audit.base import AuditWriteError, record_event
from termgate.audit.jsonl import JsonlAuditSink
from termgate.audit.memory import MemoryAuditSink
from termgate.domain.models import AuditEvent, AuditEventType, AuditFilter


def _event(event_type=AuditEventType.ALLOWED_COMMAND, **kwargs) -> AuditEvent:
    defaults = {"target_id": "db1", "identity": "ops"}
    defaults.update(kwargs)
    return AuditEvent(event_type=event_type, **defaults)


class TestAuditFilter:
    def test_empty_filter_matches_everything(self) -> None:
        assert AuditFilter().matches(_event())

    def test_field_filters(self) -> None:
        event = _event(AuditEventType.IP_DENIED, source_ip="10.0.0.5")
        assert AuditFilter(target_id="db1", event_type=AuditEventType.IP_DENIED).matches(event)
        assert not AuditFilter(identity="alice").matches(event)
        assert not AuditFilter(target_id="other").matches(event)

    def test_date_range(self) -> None:
        now = datetime.now(timezone.utc)
        event = _event(timestamp=now)
        assert AuditFilter(start_date=now - timedelta(minutes=1)).matches(event)
        assert not AuditFilter(start_date=now + timedelta(minutes=1)).matches(event)
        assert not AuditFilter(end_date=now - timedelta(minutes=1)).matches(event)

    def test_naive_dates_treated_as_utc(self) -> None:
        event = _event(timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
        assert AuditFilter(start_date=datetime(2024, 5, 1, 11, 0)).matches(event)
        assert not AuditFilter(start_date=datetime(2024, 5, 1, 13, 0)).matches(event)


class TestMemoryAuditSink:
    @pytest.mark.asyncio
    async def test_append_and_query(self) -> None:
        sink = MemoryAuditSink()
        await sink.append(_event())
        await sink.append(_event(AuditEventType.USER_DENIED, identity="alice"))
        assert len(await sink.query()) == 2
        denied = await sink.query(AuditFilter(event_type=AuditEventType.USER_DENIED))
        assert [e.identity for e in denied] == ["alice"]


class TestJsonlAuditSink:
    @pytest.mark.asyncio
    async def test_writes_one_line_per_event(self, tmp_path: Path) -> None:
        path = tmp_path / "logs" / "security.log"
        sink = JsonlAuditSink(path)
        await sink.append(_event(command="save-all"))
        await sink.append(_event(AuditEventType.IP_DENIED, source_ip="10.0.0.5"))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["eventType"] == "ALLOWED_COMMAND"
        assert first["terminalId"] == "db1"
        assert first["username"] == "ops"
        assert first["command"] == "save-all"
        assert "clientIP" not in first
        assert json.loads(lines[1])["clientIP"] == "10.0.0.5"

    @pytest.mark.asyncio
    async def test_query_reads_back_in_order(self, tmp_path: Path) -> None:
        sink = JsonlAuditSink(tmp_path / "security.log")
        for name in ("a", "b", "c"):
            await sink.append(_event(identity=name))
        events = await sink.query()
        assert [e.identity for e in events] == ["a", "b", "c"]
        only_b = await sink.query(AuditFilter(identity="b"))
        assert len(only_b) == 1

    @pytest.mark.asyncio
    async def test_query_missing_file(self, tmp_path: Path) -> None:
        assert await JsonlAuditSink(tmp_path / "none.log").query() == []

    @pytest.mark.asyncio
    async def test_query_skips_corrupt_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "security.log"
        sink = JsonlAuditSink(path)
        await sink.append(_event())
        with open(path, "a", encoding="utf-8") as f:
            f.write("not json\n\n")
        await sink.append(_event(identity="later"))
        events = await sink.query()
        assert [e.identity for e in events] == ["ops", "later"]

    @pytest.mark.asyncio
    async def test_unwritable_path_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        sink = JsonlAuditSink(blocker / "security.log")
        with pytest.raises(AuditWriteError):
            await sink.append(_event())


class TestRecordEvent:
    @pytest.mark.asyncio
    async def test_builds_event(self) -> None:
        sink = MemoryAuditSink()
        await record_event(
            sink, AuditEventType.RATE_LIMIT_EXCEEDED, "db1", "ops", limit=3
        )
        (event,) = sink.events
        assert event.event_type is AuditEventType.RATE_LIMIT_EXCEEDED
        assert event.limit == 3
        assert event.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_no_sink(self) -> None:
        await record_event(None, AuditEventType.ALLOWED_COMMAND, "db1", "ops")

    @pytest.mark.asyncio
    async def test_sink_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        sink = JsonlAuditSink(blocker / "security.log")
        with caplog.at_level(logging.ERROR, logger="termgate.audit.base"):
            await record_event(sink, AuditEventType.ALLOWED_COMMAND, "db1", "ops")
        assert "Failed to write security log" in caplog.text
