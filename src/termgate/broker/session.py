"""Session lifecycle and command dispatch.

A target's session is either absent or running in the multiplexer; the
broker keeps no copy of that state. It only makes sure that concurrent
callers do not create the same session twice or interleave keystrokes
in the same session.

The broker performs no authorization: callers run the access validator
first (see :class:`termgate.broker.gateway.CommandGateway`).
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from termgate.broker.registry import TargetRegistry
from termgate.broker.subscriptions import (
    ErrorCallback,
    OutputCallback,
    Subscription,
    SubscriptionHub,
)
from termgate.domain.models import SessionTarget
from termgate.multiplexer.base import Multiplexer
from termgate.policy.commands import INTERRUPT
from termgate.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class EnsuredSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_label: str
    target: SessionTarget
    already_existed: bool


class SessionBroker:
    """Creates, feeds and watches the sessions behind terminal targets."""

    def __init__(
        self,
        multiplexer: Multiplexer,
        registry: TargetRegistry,
        poll_interval: float = 0.5,
        stream_lines: int = 50,
        snapshot_lines: int = 100,
    ) -> None:
        self._multiplexer = multiplexer
        self._registry = registry
        self._snapshot_lines = snapshot_lines
        self._session_locks = KeyedLocks()
        self._subscriptions = SubscriptionHub(multiplexer, poll_interval, stream_lines)

    @property
    def subscriptions(self) -> SubscriptionHub:
        return self._subscriptions

    async def ensure_session(self, target_id: str) -> EnsuredSession:
        """Return the target's session, creating it if it is not running.

        Raises:
            TargetNotFoundError: If ``target_id`` is not configured.
            MultiplexerError: If the session cannot be created.
        """
        target = self._registry.get(target_id)
        label = target.label
        async with self._session_locks(label):
            existed = await self._multiplexer.exists(label)
            if not existed:
                logger.info("Session %s doesn't exist, creating it", label)
                await self._multiplexer.create(
                    label, target.working_directory, target.startup_command
                )
        return EnsuredSession(session_label=label, target=target, already_existed=existed)

    async def dispatch_command(self, session_label: str, command: str) -> None:
        """Type ``command`` into the session and press Enter.

        The interrupt character is sent as a bare Ctrl-C keypress.

        Raises:
            SessionGoneError: If the session vanished; the caller may
                              ensure it again and retry.
            MultiplexerError: For any other failure.
        """
        async with self._session_locks(session_label):
            if command == INTERRUPT:
                await self._multiplexer.send_keys(session_label, "C-c", literal=False)
            else:
                await self._multiplexer.send_keys(session_label, command)
                await self._multiplexer.send_keys(session_label, "C-m", literal=False)
        logger.debug("Dispatched command to %s", session_label)

    async def capture_snapshot(self, session_label: str, line_count: int | None = None) -> str:
        return await self._multiplexer.capture_output(
            session_label, line_count or self._snapshot_lines
        )

    async def subscribe(
        self,
        session_label: str,
        on_output: OutputCallback,
        on_error: ErrorCallback | None = None,
        last_payload: str | None = None,
    ) -> Subscription:
        return await self._subscriptions.subscribe(
            session_label, on_output, on_error, last_payload
        )

    async def list_sessions(self) -> list[str]:
        return await self._multiplexer.list_sessions()

    async def kill_session(self, session_label: str) -> None:
        async with self._session_locks(session_label):
            await self._multiplexer.kill(session_label)

    async def close(self) -> None:
        await self._subscriptions.close()
