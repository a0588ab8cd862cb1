"""End-to-end tests for the command gateway."""

from __future__ import annotations

import pytest

from termgate.audit.memory import MemoryAuditSink
from termgate.broker.gateway import AccessDeniedError, CommandGateway
from termgate.broker.registry import TargetNotFoundError
from termgate.domain.models import AuditEventType, Identity, PolicyConfig, SessionTarget
from termgate.store.config_store import ConfigStore


class TestExecute:
    @pytest.mark.asyncio
    async def test_admitted_command_reaches_session(
        self, gateway: CommandGateway, ops_identity: Identity, multiplexer
    ) -> None:
        result = await gateway.execute(ops_identity, "db1", "save-all", "192.168.1.50")
        assert result.success
        assert result.session_label == "db1"
        assert result.message == "Command executed on db1"
        assert ("db1", "save-all", True) in multiplexer.sent

    @pytest.mark.asyncio
    async def test_unassigned_target(
        self, gateway: CommandGateway, ops_identity: Identity, audit: MemoryAuditSink,
        multiplexer,
    ) -> None:
        with pytest.raises(AccessDeniedError) as exc_info:
            await gateway.execute(ops_identity, "scratch", "ls", "192.168.1.50")
        assert exc_info.value.decision.reasons == ["Access denied to this terminal"]
        assert audit.events[-1].event_type is AuditEventType.USER_DENIED
        assert multiplexer.sessions == {}

    @pytest.mark.asyncio
    async def test_denied_command_creates_no_session(
        self, gateway: CommandGateway, ops_identity: Identity, multiplexer
    ) -> None:
        with pytest.raises(AccessDeniedError) as exc_info:
            await gateway.execute(ops_identity, "db1", "drop table", "192.168.1.50")
        assert "not in the allowed list" in exc_info.value.decision.reasons[0]
        assert multiplexer.sessions == {}

    @pytest.mark.asyncio
    async def test_unknown_target(
        self, gateway: CommandGateway, admin_identity: Identity
    ) -> None:
        with pytest.raises(TargetNotFoundError):
            await gateway.execute(admin_identity, "missing", "ls", "127.0.0.1")


class TestExecuteMany:
    @pytest.mark.asyncio
    async def test_partial_failure(
        self, gateway: CommandGateway, admin_identity: Identity
    ) -> None:
        results = await gateway.execute_many(
            admin_identity, ["scratch", "db1", "missing"], "save-all", "127.0.0.1"
        )
        by_id = {r.target_id: r for r in results}
        assert by_id["scratch"].success
        assert not by_id["db1"].success
        assert by_id["db1"].error == "Access denied"
        assert "IP 127.0.0.1" in by_id["db1"].reasons[0]
        assert not by_id["missing"].success
        assert "not found" in by_id["missing"].error

    @pytest.mark.asyncio
    async def test_execute_all_only_visible_targets(
        self, gateway: CommandGateway, ops_identity: Identity
    ) -> None:
        results = await gateway.execute_all(ops_identity, "save-all", "192.168.1.7")
        assert [r.target_id for r in results] == ["db1"]
        assert results[0].success


class TestAttach:
    @pytest.mark.asyncio
    async def test_attach_returns_initial_output(
        self, gateway: CommandGateway, ops_identity: Identity, multiplexer
    ) -> None:
        async def noop(text: str) -> None:
            pass

        attachment = await gateway.attach(ops_identity, "db1", "192.168.1.50", noop)
        assert attachment.session.session_label == "db1"
        assert attachment.initial_output == ""
        assert attachment.subscription.active
        await attachment.subscription.unsubscribe()

    @pytest.mark.asyncio
    async def test_snapshot_requires_access(
        self, gateway: CommandGateway, ops_identity: Identity
    ) -> None:
        with pytest.raises(AccessDeniedError):
            await gateway.snapshot(ops_identity, "db1", "10.1.1.1")


class TestAdministration:
    @pytest.mark.asyncio
    async def test_replace_policy_persists_then_swaps(
        self, registry, validator, broker, audit, tmp_path
    ) -> None:
        store = ConfigStore(tmp_path / "terminals.json", tmp_path / "security.json")
        gateway = CommandGateway(registry, validator, broker, store=store, audit=audit)
        await gateway.replace_policy(PolicyConfig())
        assert gateway.policy == PolicyConfig()
        assert await store.load_policy() == PolicyConfig()

    @pytest.mark.asyncio
    async def test_replace_targets(self, gateway: CommandGateway) -> None:
        await gateway.replace_targets([SessionTarget(id="new-box")])
        assert [t.id for t in gateway.registry.all()] == ["new-box"]

    @pytest.mark.asyncio
    async def test_security_logs(
        self, gateway: CommandGateway, ops_identity: Identity
    ) -> None:
        await gateway.execute(ops_identity, "db1", "save-all", "192.168.1.50")
        logs = await gateway.security_logs()
        assert logs[-1].event_type is AuditEventType.ALLOWED_COMMAND
        assert logs[-1].identity == "ops"
