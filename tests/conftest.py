"""Shared test fixtures for the termgate test suite.

Provides an in-memory multiplexer, sample terminals and policies, and
fully wired validator/broker/gateway instances built on top of them.
"""

from __future__ import annotations

import asyncio

import pytest

from termgate.audit.memory import MemoryAuditSink
from termgate.broker.gateway import CommandGateway
from termgate.broker.registry import TargetRegistry
from termgate.broker.session import SessionBroker
from termgate.domain.models import (
    CommandFiltering,
    Identity,
    NetworkAllowlist,
    PolicyConfig,
    RateLimiting,
    SessionTarget,
    TargetPolicy,
)
from termgate.multiplexer.base import Multiplexer, MultiplexerError, SessionGoneError
from termgate.policy.access import AccessValidator


# ---------------------------------------------------------------------------
# Fake multiplexer
# ---------------------------------------------------------------------------


class FakeMultiplexer(Multiplexer):
    """Keeps sessions in a dict and yields to the loop on every call."""

    def __init__(self) -> None:
        self.sessions: dict[str, dict] = {}
        self.create_calls: list[str] = []
        self.sent: list[tuple[str, str, bool]] = []
        self.fail_capture = False

    async def exists(self, label: str) -> bool:
        await asyncio.sleep(0)
        return label in self.sessions

    async def create(self, label, working_directory=None, startup_command=None) -> None:
        await asyncio.sleep(0)
        self.create_calls.append(label)
        self.sessions.setdefault(
            label, {"cwd": working_directory, "startup": startup_command, "output": ""}
        )

    async def send_keys(self, label: str, text: str, literal: bool = True) -> None:
        await asyncio.sleep(0)
        if label not in self.sessions:
            raise SessionGoneError(f"Session {label} not found", label=label)
        self.sent.append((label, text, literal))

    async def capture_output(self, label: str, line_count: int) -> str:
        await asyncio.sleep(0)
        if self.fail_capture:
            raise MultiplexerError("capture failed", label=label)
        if label not in self.sessions:
            raise SessionGoneError(f"Session {label} not found", label=label)
        return self.sessions[label]["output"]

    async def list_sessions(self) -> list[str]:
        return list(self.sessions)

    async def kill(self, label: str) -> None:
        if self.sessions.pop(label, None) is None:
            raise SessionGoneError(f"Session {label} not found", label=label)


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_targets() -> list[SessionTarget]:
    return [
        SessionTarget(
            id="minecraft-server",
            display_name="Minecraft Server",
            session_label="mc",
            working_directory="/srv/app",
            startup_command="java -jar server.jar",
        ),
        SessionTarget(id="db1", display_name="Database", working_directory="/var/lib/db"),
        SessionTarget(id="scratch", display_name="Scratch shell"),
    ]


@pytest.fixture
def sample_policy() -> PolicyConfig:
    return PolicyConfig(
        network_allowlist=NetworkAllowlist(enabled=False),
        per_target={
            "minecraft-server": TargetPolicy(
                allowed_command_patterns=["say *", "list", "ban *", "save-*"],
                denied_command_patterns=["stop", "op *"],
                approval_required_patterns=["ban *"],
                max_requests_per_window=3,
                allowed_identities=["admin", "moderator"],
            ),
            "db1": TargetPolicy(
                allowed_ips=["192.168.1.0/24"],
                allowed_command_patterns=["save-*"],
            ),
        },
        command_filtering=CommandFiltering(
            enabled=True,
            global_denied_command_patterns=["rm -rf *"],
            global_denied_regexes=[r".*\bsudo\s+rm\b.*"],
        ),
        rate_limiting=RateLimiting(enabled=True, per_identity_limit=10, window_ms=60_000),
    )


@pytest.fixture
def ops_identity() -> Identity:
    return Identity(username="ops", role="user", authorized_target_ids=("db1",))


@pytest.fixture
def admin_identity() -> Identity:
    return Identity(username="admin", role="admin")


# ---------------------------------------------------------------------------
# Wired components
# ---------------------------------------------------------------------------


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def multiplexer() -> FakeMultiplexer:
    return FakeMultiplexer()


@pytest.fixture
def registry(sample_targets: list[SessionTarget]) -> TargetRegistry:
    return TargetRegistry(targets=sample_targets)


@pytest.fixture
def validator(
    registry: TargetRegistry, sample_policy: PolicyConfig, audit: MemoryAuditSink
) -> AccessValidator:
    return AccessValidator(registry.root_for, sample_policy, audit)


@pytest.fixture
def broker(multiplexer: FakeMultiplexer, registry: TargetRegistry) -> SessionBroker:
    return SessionBroker(multiplexer, registry, poll_interval=0.01)


@pytest.fixture
def gateway(
    registry: TargetRegistry,
    validator: AccessValidator,
    broker: SessionBroker,
    audit: MemoryAuditSink,
) -> CommandGateway:
    return CommandGateway(registry, validator, broker, audit=audit)
