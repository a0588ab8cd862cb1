"""Session registry and broker for termgate.

Public API:
    CommandGateway -- Access-checked entry point for all session operations
    SessionBroker -- Session lifecycle, dispatch and output streaming
    TargetRegistry -- Cached view of configured terminals
"""

from termgate.broker.gateway import (
    AccessDeniedError,
    Attachment,
    CommandGateway,
    ExecutionResult,
)
from termgate.broker.registry import TargetNotFoundError, TargetRegistry
from termgate.broker.session import EnsuredSession, SessionBroker
from termgate.broker.subscriptions import Subscription, SubscriptionHub

__all__ = [
    "AccessDeniedError",
    "Attachment",
    "CommandGateway",
    "EnsuredSession",
    "ExecutionResult",
    "SessionBroker",
    "Subscription",
    "SubscriptionHub",
    "TargetNotFoundError",
    "TargetRegistry",
]
