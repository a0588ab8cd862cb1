"""Composed access check for one broker request.

Runs network, identity, rate and command checks in that order and stops
at the first failure. The policy snapshot is read once at the start of
each call, so an admin replacing the policy mid-request never produces a
decision based on half of each.
"""

from __future__ import annotations

import logging

from termgate.audit.base import AuditSink, record_event
from termgate.domain.models import AccessDecision, AuditEventType, PolicyConfig
from termgate.policy.commands import CommandPolicy, RootLookup
from termgate.policy.network import ip_allowed
from termgate.policy.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class AccessValidator:
    """Front door of the broker: every request is judged here first."""

    def __init__(
        self,
        root_lookup: RootLookup,
        policy: PolicyConfig | None = None,
        audit: AuditSink | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._policy = policy
        self._audit = audit
        self._rate_limiter = rate_limiter or RateLimiter()
        self._commands = CommandPolicy(root_lookup, audit)

    @property
    def policy(self) -> PolicyConfig | None:
        return self._policy

    def replace_policy(self, policy: PolicyConfig) -> None:
        """Swap in a new policy snapshot. Callers persist it first."""
        self._policy = policy
        logger.info("Security policy replaced (%d terminal rules)", len(policy.per_target))

    async def validate_access(
        self,
        target_id: str,
        identity: str,
        source_ip: str,
        command: str | None = None,
        current_directory: str | None = None,
    ) -> AccessDecision:
        policy = self._policy
        if policy is None:
            logger.error("Access check for %s without a loaded policy", target_id)
            return AccessDecision.deny("Security policy is not loaded")

        if not ip_allowed(policy, target_id, source_ip):
            await record_event(
                self._audit, AuditEventType.IP_DENIED, target_id, identity,
                settings=policy.audit_logging, source_ip=source_ip,
            )
            return AccessDecision.deny(f"IP {source_ip} is not allowed to access this terminal")

        target_policy = policy.for_target(target_id)
        if (
            target_policy is not None
            and target_policy.allowed_identities
            and identity not in target_policy.allowed_identities
        ):
            await record_event(
                self._audit, AuditEventType.USER_DENIED, target_id, identity,
                settings=policy.audit_logging, source_ip=source_ip,
            )
            return AccessDecision.deny(f"User {identity} is not allowed to access this terminal")

        rate = await self._rate_limiter.check_and_record(policy, target_id, identity)
        if not rate.allowed:
            await record_event(
                self._audit, AuditEventType.RATE_LIMIT_EXCEEDED, target_id, identity,
                settings=policy.audit_logging, limit=rate.limit,
            )
            return AccessDecision.deny(
                rate.reason or "Rate limit exceeded",
                retry_after_seconds=rate.retry_after_seconds,
            )

        if command:
            decision = await self._commands.evaluate(
                policy, target_id, command, identity, current_directory
            )
            if not decision.allowed:
                return AccessDecision.deny(
                    decision.reason or "Command denied",
                    requires_approval=decision.requires_approval,
                )

        return AccessDecision.permit()
