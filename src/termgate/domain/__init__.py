"""Domain models for termgate.

This package contains the core data structures, enumerations and value
objects used throughout the system. All models use Pydantic v2 for
validation and serialization.
"""

from termgate.domain.models import (
    AccessDecision,
    AuditEvent,
    AuditEventType,
    AuditFilter,
    CommandDecision,
    Identity,
    NavigationDecision,
    PolicyConfig,
    RateDecision,
    SecurityLogging,
    SessionTarget,
    TargetPolicy,
    default_policy,
)

__all__ = [
    "AccessDecision",
    "AuditEvent",
    "AuditEventType",
    "AuditFilter",
    "CommandDecision",
    "Identity",
    "NavigationDecision",
    "PolicyConfig",
    "RateDecision",
    "SecurityLogging",
    "SessionTarget",
    "TargetPolicy",
    "default_policy",
]
