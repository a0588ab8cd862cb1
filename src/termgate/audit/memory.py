"""In-process audit sink, used by tests and embedded callers."""

from __future__ import annotations

from termgate.audit.base import AuditSink
from termgate.domain.models import AuditEvent, AuditFilter


class MemoryAuditSink(AuditSink):
    """Keeps events in a list for the lifetime of the process."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append(self, event: AuditEvent) -> None:
        self._events.append(event)

    async def query(self, filters: AuditFilter | None = None) -> list[AuditEvent]:
        if filters is None:
            return list(self._events)
        return [event for event in self._events if filters.matches(event)]
