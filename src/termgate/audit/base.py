"""Abstract base class for the security audit trail.

Every access decision is written to an AuditSink. Sinks are
append-only: events are never mutated or deleted here, retention and
rotation belong to whoever operates the log.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from termgate.domain.models import AuditEvent, AuditEventType, AuditFilter, SecurityLogging

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Destination for security decision records."""

    @abstractmethod
    async def append(self, event: AuditEvent) -> None:
        """Persist one event.

        Raises:
            AuditWriteError: If the event could not be written.
        """
        ...

    @abstractmethod
    async def query(self, filters: AuditFilter | None = None) -> list[AuditEvent]:
        """Return stored events in write order, optionally filtered."""
        ...


class AuditWriteError(Exception):
    """Raised when an audit record cannot be persisted."""


async def record_event(
    sink: AuditSink | None,
    event_type: AuditEventType,
    target_id: str,
    identity: str,
    *,
    settings: SecurityLogging | None = None,
    **details: object,
) -> None:
    """Write an audit event without letting a sink failure escape.

    An access decision must never fail because the audit trail is
    unavailable, so write errors are logged locally and dropped.
    ``settings`` (the policy's logging section) may suppress the event.
    """
    if sink is None:
        return
    if settings is not None and not settings.records(event_type):
        return
    event = AuditEvent(
        event_type=event_type, target_id=target_id, identity=identity, **details
    )
    try:
        await sink.append(event)
    except Exception as e:
        logger.error("Failed to write security log (%s): %s", event_type.value, e)
