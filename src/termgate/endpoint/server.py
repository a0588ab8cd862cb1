"""FastAPI HTTP/WebSocket server for termgate.

A thin transport over :class:`termgate.broker.gateway.CommandGateway`:

    GET  /health
    GET  /api/terminals                      -> terminals visible to the caller
    POST /api/execute-channel                <- {"terminalId", "command", "cwd"?}
    POST /api/execute-multiple-channels      <- {"terminalIds": [...], "command"}
    POST /api/execute-all-channels           <- {"command"}
    GET  /api/terminals/{id}/output?lines=N
    GET  /api/admin/security                 (admin)
    PUT  /api/admin/security                 (admin)
    GET  /api/admin/security/logs            (admin)
    GET  /api/admin/terminals                (admin)
    PUT  /api/admin/terminals                (admin)
    WS   /ws/terminals/{id}                  -> {"type": "output", ...} frames
                                             <- {"command": "...", "cwd"?}
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

import uvicorn
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.requests import HTTPConnection
from starlette.websockets import WebSocketDisconnect

from termgate.audit.jsonl import JsonlAuditSink
from termgate.broker.gateway import AccessDeniedError, CommandGateway, ExecutionResult
from termgate.broker.registry import TargetNotFoundError, TargetRegistry
from termgate.broker.session import SessionBroker
from termgate.config.settings import Settings
from termgate.domain.models import AuditEventType, AuditFilter, Identity
from termgate.endpoint.identity import HeaderIdentityProvider, IdentityProvider
from termgate.multiplexer.base import MultiplexerError
from termgate.multiplexer.tmux import TmuxMultiplexer
from termgate.policy.access import AccessValidator
from termgate.store.config_store import (
    ConfigStore,
    ConfigurationError,
    PersistenceError,
    parse_policy,
    parse_targets,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExecuteRequest(_ApiModel):
    terminal_id: str = Field(description="Target terminal id")
    command: str = Field(min_length=1)
    cwd: str | None = Field(default=None, description="Session's current directory, if known")


class ExecuteManyRequest(_ApiModel):
    terminal_ids: list[str]
    command: str = Field(min_length=1)


class ExecuteAllRequest(_ApiModel):
    command: str = Field(min_length=1)


class HealthResponse(BaseModel):
    status: str = "ok"
    policy_loaded: bool = False
    terminals: int = 0


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


async def build_gateway(settings: Settings) -> CommandGateway:
    """Assemble the production gateway from settings."""
    store = ConfigStore(settings.storage.targets_path, settings.storage.policy_path)
    audit = JsonlAuditSink(settings.storage.audit_log_path)
    registry = TargetRegistry(store)
    await registry.load()
    validator = AccessValidator(registry.root_for, await store.load_policy(), audit)
    broker = SessionBroker(
        TmuxMultiplexer(settings.broker.tmux_binary),
        registry,
        poll_interval=settings.broker.poll_interval,
        stream_lines=settings.broker.stream_lines,
        snapshot_lines=settings.broker.snapshot_lines,
    )
    return CommandGateway(registry, validator, broker, store=store, audit=audit)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _result(result: ExecutionResult) -> dict[str, Any]:
    return {
        "terminalId": result.target_id,
        "success": result.success,
        "command": result.command,
        "sessionName": result.session_label,
        "message": result.message,
        "error": result.error,
        "reasons": result.reasons or None,
        "requiresApproval": result.requires_approval or None,
        "retryAfter": result.retry_after_seconds,
    }


def create_app(
    gateway: CommandGateway | None = None,
    settings: Settings | None = None,
    identity_provider: IdentityProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        gateway: Pre-built gateway (for testing). Built from ``settings``
                 on startup when omitted.
        settings: Runtime settings; defaults are used when omitted.
        identity_provider: Resolves callers; defaults to proxy headers.
    """
    settings = settings or Settings()
    identities = identity_provider or HeaderIdentityProvider(settings.identity)
    trust_forwarded_for = settings.server.trust_forwarded_for

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.gateway is None:
            app.state.gateway = await build_gateway(settings)
        logger.info("termgate started")
        yield
        await app.state.gateway.broker.close()
        logger.info("termgate stopped")

    app = FastAPI(
        title="termgate",
        description="Access-controlled command broker for tmux sessions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    def get_gateway(request: Request) -> CommandGateway:
        return request.app.state.gateway

    def client_ip(connection: HTTPConnection) -> str:
        if trust_forwarded_for:
            forwarded = connection.headers.get("x-forwarded-for", "")
            if forwarded:
                return forwarded.split(",")[0].strip()
            real_ip = connection.headers.get("x-real-ip")
            if real_ip:
                return real_ip.strip()
        if connection.client is not None:
            return connection.client.host
        return "127.0.0.1"

    def require_admin(identity: Identity = Depends(identities)) -> Identity:
        if not identity.is_admin:
            raise HTTPException(status_code=403, detail="Admin access required")
        return identity

    @app.exception_handler(AccessDeniedError)
    async def access_denied(request: Request, exc: AccessDeniedError) -> JSONResponse:
        decision = exc.decision
        content: dict[str, Any] = {"error": "Access denied", "reasons": decision.reasons}
        headers = {}
        if decision.requires_approval:
            content["requiresApproval"] = True
        if decision.retry_after_seconds is not None:
            content["retryAfter"] = decision.retry_after_seconds
            headers["Retry-After"] = str(decision.retry_after_seconds)
        return JSONResponse(status_code=403, content=content, headers=headers)

    @app.exception_handler(TargetNotFoundError)
    async def target_not_found(request: Request, exc: TargetNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(MultiplexerError)
    async def multiplexer_failed(request: Request, exc: MultiplexerError) -> JSONResponse:
        logger.error("Session operation failed: %s", exc)
        return JSONResponse(status_code=503, content={"error": str(exc), "retryable": True})

    @app.exception_handler(ConfigurationError)
    async def bad_configuration(request: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"error": str(exc)})

    @app.exception_handler(PersistenceError)
    async def persistence_failed(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Configuration write failed: %s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/health")
    async def health_check(gw: CommandGateway = Depends(get_gateway)) -> HealthResponse:
        return HealthResponse(
            policy_loaded=gw.policy is not None, terminals=len(gw.registry.all())
        )

    @app.get("/api/terminals")
    async def list_terminals(
        identity: Identity = Depends(identities),
        gw: CommandGateway = Depends(get_gateway),
    ) -> list[dict[str, Any]]:
        return [_dump(t) for t in gw.targets_for(identity)]

    @app.post("/api/execute-channel")
    async def execute_channel(
        body: ExecuteRequest,
        request: Request,
        identity: Identity = Depends(identities),
        gw: CommandGateway = Depends(get_gateway),
    ) -> dict[str, Any]:
        result = await gw.execute(
            identity, body.terminal_id, body.command, client_ip(request), body.cwd
        )
        return _result(result)

    @app.post("/api/execute-multiple-channels")
    async def execute_multiple_channels(
        body: ExecuteManyRequest,
        request: Request,
        identity: Identity = Depends(identities),
        gw: CommandGateway = Depends(get_gateway),
    ) -> list[dict[str, Any]]:
        results = await gw.execute_many(
            identity, body.terminal_ids, body.command, client_ip(request)
        )
        return [_result(r) for r in results]

    @app.post("/api/execute-all-channels")
    async def execute_all_channels(
        body: ExecuteAllRequest,
        request: Request,
        identity: Identity = Depends(identities),
        gw: CommandGateway = Depends(get_gateway),
    ) -> list[dict[str, Any]]:
        results = await gw.execute_all(identity, body.command, client_ip(request))
        return [_result(r) for r in results]

    @app.get("/api/terminals/{terminal_id}/output")
    async def terminal_output(
        terminal_id: str,
        request: Request,
        lines: int = Query(default=100, gt=0, le=10_000),
        identity: Identity = Depends(identities),
        gw: CommandGateway = Depends(get_gateway),
    ) -> dict[str, str]:
        output = await gw.snapshot(identity, terminal_id, client_ip(request), lines)
        return {"terminalId": terminal_id, "output": output}

    @app.get("/api/admin/security")
    async def get_security(
        admin: Identity = Depends(require_admin),
        gw: CommandGateway = Depends(get_gateway),
    ) -> dict[str, Any]:
        if gw.policy is None:
            raise HTTPException(status_code=503, detail="Security policy is not loaded")
        return _dump(gw.policy)

    @app.put("/api/admin/security")
    async def put_security(
        payload: dict[str, Any] = Body(...),
        admin: Identity = Depends(require_admin),
        gw: CommandGateway = Depends(get_gateway),
    ) -> dict[str, Any]:
        await gw.replace_policy(parse_policy(payload))
        logger.info("Security policy updated by %s", admin.username)
        return {"success": True, "message": "Security configuration updated"}

    @app.get("/api/admin/security/logs")
    async def get_security_logs(
        terminal_id: str | None = Query(default=None, alias="terminalId"),
        username: str | None = Query(default=None),
        event_type: AuditEventType | None = Query(default=None, alias="eventType"),
        start_date: datetime | None = Query(default=None, alias="startDate"),
        end_date: datetime | None = Query(default=None, alias="endDate"),
        admin: Identity = Depends(require_admin),
        gw: CommandGateway = Depends(get_gateway),
    ) -> list[dict[str, Any]]:
        filters = AuditFilter(
            target_id=terminal_id,
            identity=username,
            event_type=event_type,
            start_date=start_date,
            end_date=end_date,
        )
        return [_dump(event) for event in await gw.security_logs(filters)]

    @app.get("/api/admin/terminals")
    async def get_terminals(
        admin: Identity = Depends(require_admin),
        gw: CommandGateway = Depends(get_gateway),
    ) -> list[dict[str, Any]]:
        return [_dump(t) for t in gw.registry.all()]

    @app.put("/api/admin/terminals")
    async def put_terminals(
        payload: list[dict[str, Any]] = Body(...),
        admin: Identity = Depends(require_admin),
        gw: CommandGateway = Depends(get_gateway),
    ) -> dict[str, Any]:
        await gw.replace_targets(parse_targets(payload))
        logger.info("Terminals updated by %s", admin.username)
        return {"success": True, "message": "Terminals updated successfully"}

    @app.websocket("/ws/terminals/{terminal_id}")
    async def terminal_stream(websocket: WebSocket, terminal_id: str) -> None:
        gw: CommandGateway = websocket.app.state.gateway
        identity = identities.resolve(websocket)
        if identity is None:
            await websocket.close(code=4401)
            return
        await websocket.accept()
        source_ip = client_ip(websocket)
        send_lock = asyncio.Lock()

        async def send(frame: dict[str, Any]) -> None:
            async with send_lock:
                await websocket.send_json(frame)

        async def on_output(output: str) -> None:
            await send({"type": "output", "terminalId": terminal_id, "output": output})

        async def on_error(error: Exception) -> None:
            await send({"type": "error", "terminalId": terminal_id, "message": str(error)})

        try:
            attachment = await gw.attach(identity, terminal_id, source_ip, on_output, on_error)
        except AccessDeniedError as e:
            await send(
                {"type": "error", "message": "Access denied", "reasons": e.decision.reasons}
            )
            await websocket.close(code=4403)
            return
        except (TargetNotFoundError, MultiplexerError) as e:
            await send({"type": "error", "message": str(e)})
            await websocket.close(code=4404 if isinstance(e, TargetNotFoundError) else 1011)
            return

        await on_output(attachment.initial_output)
        await send(
            {
                "type": "attached",
                "terminalId": terminal_id,
                "sessionName": attachment.session.session_label,
            }
        )
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    await send({"type": "error", "message": "Frames must be JSON objects"})
                    continue
                command = message.get("command") if isinstance(message, dict) else None
                if not command:
                    await send({"type": "error", "message": "command is required"})
                    continue
                try:
                    await gw.execute(
                        identity, terminal_id, command, source_ip, message.get("cwd")
                    )
                except AccessDeniedError as e:
                    await send(
                        {
                            "type": "error",
                            "message": "Command denied",
                            "reasons": e.decision.reasons,
                            "requiresApproval": e.decision.requires_approval,
                        }
                    )
                    continue
                except (TargetNotFoundError, MultiplexerError) as e:
                    await send({"type": "error", "message": str(e)})
                    continue
                await send(
                    {"type": "command-sent", "terminalId": terminal_id, "command": command}
                )
        except WebSocketDisconnect:
            logger.debug("%s detached from %s", identity.username, terminal_id)
        finally:
            await attachment.subscription.unsubscribe()

    return app


def main() -> None:
    """Entry point for running the server standalone."""
    settings = Settings()
    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
