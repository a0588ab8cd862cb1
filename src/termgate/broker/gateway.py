"""Entry point for callers of the broker.

CommandGateway pairs every session operation with the access check it
requires, so a command can only reach a session after it has been
admitted in the same call. Transports (HTTP, WebSocket, CLI) talk to
the gateway, never to the SessionBroker directly.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from termgate.audit.base import AuditSink, record_event
from termgate.broker.registry import TargetNotFoundError, TargetRegistry
from termgate.broker.session import EnsuredSession, SessionBroker
from termgate.broker.subscriptions import ErrorCallback, OutputCallback, Subscription
from termgate.domain.models import (
    AccessDecision,
    AuditEvent,
    AuditEventType,
    AuditFilter,
    Identity,
    PolicyConfig,
    SessionTarget,
)
from termgate.multiplexer.base import MultiplexerError
from termgate.policy.access import AccessValidator
from termgate.store.config_store import ConfigStore

logger = logging.getLogger(__name__)


class AccessDeniedError(Exception):
    """Raised when a request fails the access check.

    Carries the structured decision so transports can report the reasons,
    an approval requirement, or a retry delay.
    """

    def __init__(self, target_id: str, decision: AccessDecision) -> None:
        super().__init__("; ".join(decision.reasons) or "Access denied")
        self.target_id = target_id
        self.decision = decision


class ExecutionResult(BaseModel):
    """Per-target outcome of an execute call."""

    target_id: str
    success: bool
    command: str
    session_label: str | None = None
    message: str | None = None
    error: str | None = None
    reasons: list[str] = Field(default_factory=list)
    requires_approval: bool = False
    retry_after_seconds: int | None = None


class Attachment(BaseModel):
    """A live view of a session: its state at attach time plus the stream."""

    model_config = {"arbitrary_types_allowed": True}

    session: EnsuredSession
    initial_output: str
    subscription: Subscription


class CommandGateway:
    """Admits requests and forwards the admitted ones to the broker."""

    def __init__(
        self,
        registry: TargetRegistry,
        validator: AccessValidator,
        broker: SessionBroker,
        store: ConfigStore | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._registry = registry
        self._validator = validator
        self._broker = broker
        self._store = store
        self._audit = audit

    @property
    def registry(self) -> TargetRegistry:
        return self._registry

    @property
    def broker(self) -> SessionBroker:
        return self._broker

    @property
    def policy(self) -> PolicyConfig | None:
        return self._validator.policy

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def authorize(
        self,
        identity: Identity,
        target_id: str,
        source_ip: str,
        command: str | None = None,
        current_directory: str | None = None,
    ) -> SessionTarget:
        """Run the full access check for one request.

        Raises:
            AccessDeniedError: If any check fails.
            TargetNotFoundError: If the target is not configured.
        """
        if not identity.may_access(target_id):
            policy = self._validator.policy
            await record_event(
                self._audit, AuditEventType.USER_DENIED, target_id, identity.username,
                settings=policy.audit_logging if policy is not None else None,
                source_ip=source_ip, reason="Terminal not assigned to user",
            )
            raise AccessDeniedError(
                target_id, AccessDecision.deny("Access denied to this terminal")
            )
        target = self._registry.get(target_id)
        decision = await self._validator.validate_access(
            target_id, identity.username, source_ip, command, current_directory
        )
        if not decision.allowed:
            raise AccessDeniedError(target_id, decision)
        return target

    def targets_for(self, identity: Identity) -> list[SessionTarget]:
        return [t for t in self._registry.all() if identity.may_access(t.id)]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute(
        self,
        identity: Identity,
        target_id: str,
        command: str,
        source_ip: str,
        current_directory: str | None = None,
    ) -> ExecutionResult:
        """Check and run one command on one target.

        Raises:
            AccessDeniedError: If the command is not admitted.
            TargetNotFoundError: If the target is not configured.
            MultiplexerError: If the session could not be reached.
        """
        await self.authorize(identity, target_id, source_ip, command, current_directory)
        session = await self._broker.ensure_session(target_id)
        await self._broker.dispatch_command(session.session_label, command)
        logger.info("%s ran a command on %s", identity.username, target_id)
        return ExecutionResult(
            target_id=target_id,
            success=True,
            command=command,
            session_label=session.session_label,
            message=f"Command executed on {session.session_label}",
        )

    async def execute_many(
        self,
        identity: Identity,
        target_ids: list[str],
        command: str,
        source_ip: str,
    ) -> list[ExecutionResult]:
        """Run ``command`` on several targets, one after the other.

        Each target is checked on its own; a failure on one is reported
        in its result and does not stop the rest.
        """
        results = []
        for target_id in target_ids:
            try:
                results.append(await self.execute(identity, target_id, command, source_ip))
            except AccessDeniedError as e:
                results.append(
                    ExecutionResult(
                        target_id=target_id,
                        success=False,
                        command=command,
                        error="Access denied",
                        reasons=e.decision.reasons,
                        requires_approval=e.decision.requires_approval,
                        retry_after_seconds=e.decision.retry_after_seconds,
                    )
                )
            except (TargetNotFoundError, MultiplexerError) as e:
                results.append(
                    ExecutionResult(
                        target_id=target_id, success=False, command=command, error=str(e)
                    )
                )
        return results

    async def execute_all(
        self, identity: Identity, command: str, source_ip: str
    ) -> list[ExecutionResult]:
        """Run ``command`` on every target the identity may access."""
        target_ids = [t.id for t in self.targets_for(identity)]
        return await self.execute_many(identity, target_ids, command, source_ip)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def attach(
        self,
        identity: Identity,
        target_id: str,
        source_ip: str,
        on_output: OutputCallback,
        on_error: ErrorCallback | None = None,
    ) -> Attachment:
        """Open (or create) the target's session and stream its output."""
        await self.authorize(identity, target_id, source_ip)
        session = await self._broker.ensure_session(target_id)
        initial = await self._broker.capture_snapshot(session.session_label)
        subscription = await self._broker.subscribe(
            session.session_label, on_output, on_error, last_payload=initial
        )
        logger.info("%s attached to %s", identity.username, target_id)
        return Attachment(session=session, initial_output=initial, subscription=subscription)

    async def snapshot(
        self,
        identity: Identity,
        target_id: str,
        source_ip: str,
        line_count: int | None = None,
    ) -> str:
        target = await self.authorize(identity, target_id, source_ip)
        return await self._broker.capture_snapshot(target.label, line_count)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def replace_policy(self, policy: PolicyConfig) -> None:
        """Persist ``policy`` and make it the active snapshot.

        Raises:
            PersistenceError: If the write fails; the active policy is
                              left unchanged.
        """
        if self._store is not None:
            await self._store.save_policy(policy)
        self._validator.replace_policy(policy)

    async def replace_targets(self, targets: list[SessionTarget]) -> None:
        await self._registry.replace(targets)

    async def security_logs(self, filters: AuditFilter | None = None) -> list[AuditEvent]:
        if self._audit is None:
            return []
        return await self._audit.query(filters)
