"""Security audit trail for termgate.

Public API:
    AuditSink -- Abstract base class
    MemoryAuditSink -- In-process sink
    JsonlAuditSink -- JSON-lines file sink
    record_event -- Failure-tolerant write helper
"""

from termgate.audit.base import AuditSink, AuditWriteError, record_event
from termgate.audit.jsonl import JsonlAuditSink
from termgate.audit.memory import MemoryAuditSink

__all__ = [
    "AuditSink",
    "AuditWriteError",
    "JsonlAuditSink",
    "MemoryAuditSink",
    "record_event",
]
