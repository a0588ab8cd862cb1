"""JSON-lines audit sink.

One event per line, appended to a log file. Writes run in the default
executor so a slow disk never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from termgate.audit.base import AuditSink, AuditWriteError
from termgate.domain.models import AuditEvent, AuditFilter

logger = logging.getLogger(__name__)


class JsonlAuditSink(AuditSink):
    """Appends audit events to a JSON-lines file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def append(self, event: AuditEvent) -> None:
        line = event.model_dump_json(by_alias=True, exclude_none=True) + "\n"
        loop = asyncio.get_running_loop()
        async with self._write_lock:
            try:
                await loop.run_in_executor(None, self._write_line, line)
            except OSError as e:
                raise AuditWriteError(f"Cannot write {self._path}: {e}") from e

    def _write_line(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(line)

    async def query(self, filters: AuditFilter | None = None) -> list[AuditEvent]:
        loop = asyncio.get_running_loop()
        events = await loop.run_in_executor(None, self._read_events)
        if filters is None:
            return events
        return [event for event in events if filters.matches(event)]

    def _read_events(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []
        events = []
        with open(self._path, encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(AuditEvent.model_validate_json(line))
                except ValidationError as e:
                    logger.warning("Skipping unreadable audit line %d: %s", number, e)
        return events
