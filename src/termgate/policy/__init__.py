"""Security policy evaluation for termgate.

Public API:
    AccessValidator -- Composed network/identity/rate/command check
    CommandPolicy -- Command admission rules
    RateLimiter -- Sliding-window request counting
    ip_allowed -- Source address allow-lists
    validate_navigation -- cd sandbox
    matches -- Wildcard patterns
"""

from termgate.policy.access import AccessValidator
from termgate.policy.commands import INTERRUPT, CommandPolicy
from termgate.policy.network import ip_allowed
from termgate.policy.patterns import matches
from termgate.policy.rate_limit import RateLimiter
from termgate.policy.sandbox import validate_navigation

__all__ = [
    "INTERRUPT",
    "AccessValidator",
    "CommandPolicy",
    "RateLimiter",
    "ip_allowed",
    "matches",
    "validate_navigation",
]
