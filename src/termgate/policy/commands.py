"""Command admission rules.

Commands are opaque strings. The only shell syntax recognised is the
``cd`` prefix, which is handed to the directory sandbox, and the raw
Ctrl-C byte, which is always let through so a runaway process can be
stopped.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from termgate.audit.base import AuditSink, record_event
from termgate.domain.models import AuditEventType, CommandDecision, PolicyConfig
from termgate.policy.patterns import matches_any
from termgate.policy.sandbox import is_cd_command, validate_navigation

logger = logging.getLogger(__name__)

INTERRUPT = "\x03"

# \r and \n act as Enter in the session, so any of these could smuggle in a
# second command that no rule below has seen
CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")

RootLookup = Callable[[str], str | None]


class CommandPolicy:
    """Evaluates a command against the global and per-target rules.

    Rules are checked in a fixed order and the first one that applies
    decides. Every outcome is written to the audit sink.
    """

    def __init__(self, root_lookup: RootLookup, audit: AuditSink | None = None) -> None:
        self._root_lookup = root_lookup
        self._audit = audit

    async def evaluate(
        self,
        policy: PolicyConfig,
        target_id: str,
        command: str,
        identity: str,
        current_directory: str | None = None,
    ) -> CommandDecision:
        if command == INTERRUPT:
            return CommandDecision(allowed=True)

        if CONTROL_CHARACTERS.search(command):
            return await self._deny(
                policy, target_id, command, identity,
                "Command contains control characters", "Control characters",
            )

        if is_cd_command(command):
            navigation = validate_navigation(
                self._root_lookup(target_id), command, current_directory
            )
            if navigation.allowed:
                return await self._allow(policy, target_id, command, identity)
            return await self._deny(
                policy, target_id, command, identity, navigation.reason, navigation.reason
            )

        trimmed = command.strip()
        filtering = policy.command_filtering
        if filtering.enabled:
            if matches_any(trimmed, filtering.global_denied_command_patterns):
                return await self._deny(
                    policy, target_id, command, identity,
                    "Command is globally denied", "Global deny list",
                )
            for pattern in filtering.global_denied_regexes:
                if re.search(pattern, trimmed):
                    return await self._deny(
                        policy, target_id, command, identity,
                        "Command matches denied pattern", "Global deny pattern",
                    )

        target_policy = policy.for_target(target_id)
        if target_policy is None:
            return await self._allow(policy, target_id, command, identity)

        if matches_any(trimmed, target_policy.denied_command_patterns):
            return await self._deny(
                policy, target_id, command, identity,
                "Command is denied for this terminal", "Terminal deny list",
            )

        if target_policy.allowed_command_patterns is not None:
            if matches_any(trimmed, target_policy.allowed_command_patterns) is None:
                return await self._deny(
                    policy, target_id, command, identity,
                    "Command is not in the allowed list", "Not in whitelist",
                )

        if matches_any(trimmed, target_policy.approval_required_patterns):
            await record_event(
                self._audit, AuditEventType.APPROVAL_REQUIRED, target_id, identity,
                command=command, settings=policy.audit_logging,
            )
            return CommandDecision(
                allowed=False, requires_approval=True, reason="Command requires approval"
            )

        return await self._allow(policy, target_id, command, identity)

    async def _allow(
        self, policy: PolicyConfig, target_id: str, command: str, identity: str
    ) -> CommandDecision:
        await record_event(
            self._audit, AuditEventType.ALLOWED_COMMAND, target_id, identity,
            settings=policy.audit_logging, command=command,
        )
        return CommandDecision(allowed=True)

    async def _deny(
        self,
        policy: PolicyConfig,
        target_id: str,
        command: str,
        identity: str,
        reason: str,
        log_reason: str,
    ) -> CommandDecision:
        logger.info("Denied command on %s for %s: %s", target_id, identity, log_reason)
        await record_event(
            self._audit, AuditEventType.DENIED_COMMAND, target_id, identity,
            settings=policy.audit_logging, command=command, reason=log_reason,
        )
        return CommandDecision(allowed=False, reason=reason)
