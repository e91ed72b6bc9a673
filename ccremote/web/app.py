"""FastAPI application for the ccremote bridge.

Two audiences share one server:
- Claude Code hooks: `POST /api/hooks/pre-tool-use` (blocks until the tool
  call is decided) and `POST /api/hooks/session` (session discovery)
- the operator: prompts, commands, approval actions, and the event stream
  (`GET /event` SSE, `GET /api/events` polling)
"""

from __future__ import annotations

import hmac
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from ccremote import __version__
from ccremote.providers.base import AssistantProvider
from ccremote.providers.claude_cli import ClaudeCliProvider
from ccremote.web.clock import LoopScheduler, Scheduler
from ccremote.web.commands import CommandSurface, GateLocked
from ccremote.web.discovery import parse_session_report
from ccremote.web.events import EventHub
from ccremote.web.permissions import PermissionBroker
from ccremote.web.protocol import ApprovalAction, EventType, PreToolUseRequest, deny_envelope, encode_decision
from ccremote.web.queue import ExecutionQueue
from ccremote.web.runner import NoActiveSession, TurnRunner
from ccremote.web.security import SecurityGate
from ccremote.web.sessions import SessionRegistry
from ccremote.web.settings import BridgeSettings
from ccremote.web.ui import EventHubChannel, UIChannel


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MessageCreateRequest(BaseModel):
    content: str = Field(min_length=1)


class SwitchSessionRequest(BaseModel):
    prefix: str = Field(min_length=1)


class CancelQueueRequest(BaseModel):
    include_running: bool = False


class UnlockRequest(BaseModel):
    passphrase: str = ""


class PermissionResolveRequest(BaseModel):
    action: ApprovalAction
    updated_input: Any = None
    reason: str | None = Field(default=None, max_length=500)


@dataclass
class Bridge:
    """All per-process state, owned by one object per app instance."""
    settings: BridgeSettings
    scheduler: Scheduler
    hub: EventHub
    ui: UIChannel
    sessions: SessionRegistry
    queue: ExecutionQueue
    gate: SecurityGate
    broker: PermissionBroker
    runner: TurnRunner
    commands: CommandSurface


def build_bridge(
    settings: BridgeSettings,
    *,
    provider: AssistantProvider | None = None,
    scheduler: Scheduler | None = None,
    ui: UIChannel | None = None,
    hub: EventHub | None = None,
) -> Bridge:
    scheduler = scheduler or LoopScheduler()
    hub = hub or EventHub(max_events=settings.event_buffer_size)
    ui = ui or EventHubChannel(hub)
    provider = provider or ClaudeCliProvider(
        binary=settings.claude_binary,
        timeout_s=settings.claude_timeout_s,
        kill_grace_s=settings.claude_kill_grace_s,
    )

    sessions = SessionRegistry()
    queue = ExecutionQueue(settings.max_queue_size)
    gate = SecurityGate(
        passphrase=settings.passphrase,
        auto_lock_minutes=settings.auto_lock_minutes,
        scheduler=scheduler,
        sweep_interval_s=settings.lock_sweep_interval_s,
    )
    broker = PermissionBroker(
        scheduler=scheduler,
        ui=ui,
        timeout_s=settings.permission_timeout_s,
        safe_tools=settings.safe_tools,
    )
    runner = TurnRunner(
        sessions=sessions,
        queue=queue,
        provider=provider,
        ui=ui,
        allow_fresh_sessions=settings.allow_fresh_sessions,
        default_cwd=settings.default_cwd,
    )
    commands = CommandSurface(gate=gate, sessions=sessions, queue=queue, broker=broker, runner=runner)
    return Bridge(
        settings=settings,
        scheduler=scheduler,
        hub=hub,
        ui=ui,
        sessions=sessions,
        queue=queue,
        gate=gate,
        broker=broker,
        runner=runner,
        commands=commands,
    )


def _bearer_ok(request: Request, expected: str) -> bool:
    if not expected:
        return True
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    return scheme.lower() == "bearer" and hmac.compare_digest(token.strip(), expected)


def create_app(
    settings: BridgeSettings | None = None,
    *,
    provider: AssistantProvider | None = None,
    scheduler: Scheduler | None = None,
    ui: UIChannel | None = None,
) -> FastAPI:
    settings = settings or BridgeSettings()
    bridge = build_bridge(settings, provider=provider, scheduler=scheduler, ui=ui)
    commands = bridge.commands

    app = FastAPI(title="ccremote bridge", version=__version__)
    app.state.bridge = bridge

    async def require_operator(request: Request) -> None:
        if not _bearer_ok(request, settings.auth_token):
            raise HTTPException(status_code=401, detail="invalid operator token")

    async def require_hook(request: Request) -> None:
        if not _bearer_ok(request, settings.hook_token):
            raise HTTPException(status_code=401, detail="invalid hook token")

    def admit(verb: str) -> None:
        try:
            commands.admit(verb)
        except GateLocked as e:
            raise HTTPException(status_code=423, detail=str(e)) from e

    def require_unlocked() -> None:
        # Read-only stream access: checks the gate without refreshing the idle clock.
        if not bridge.gate.is_unlocked():
            raise HTTPException(status_code=423, detail="Bridge is locked.")

    @app.on_event("startup")
    async def _startup() -> None:
        bridge.gate.start()
        logger.info(
            f"ccremote bridge up: passphrase={'enabled' if bridge.gate.enabled else 'disabled'}, "
            f"auto-lock={settings.auto_lock_minutes:g}min, queue max={settings.max_queue_size}"
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        logger.info("Shutting down")
        bridge.gate.stop()
        bridge.broker.close()
        await bridge.queue.close()

    # ── Health ───────────────────────────────────────────────────

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        return {
            "ok": True,
            "time": _now_iso(),
            "version": __version__,
            "locked": not bridge.gate.is_unlocked(),
        }

    # ── Claude Code hooks ────────────────────────────────────────

    @app.post("/api/hooks/pre-tool-use", dependencies=[Depends(require_hook)])
    async def pre_tool_use(request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
            req = PreToolUseRequest.model_validate(body)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Malformed permission request: {e}")
            return deny_envelope("Malformed permission request")

        decision = await bridge.broker.authorize(
            session_id=req.session_id,
            tool_name=req.tool_name,
            tool_input=req.tool_input,
        )
        return encode_decision(decision)

    @app.post("/api/hooks/session", dependencies=[Depends(require_hook)])
    async def session_report(request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid JSON")

        report = parse_session_report(body)
        if report is None:
            return {"tracked": False}

        session = bridge.sessions.track(
            report.session_id,
            report.working_directory,
            branch=report.branch_label,
            project=report.project_label,
        )
        await bridge.ui.send(
            EventType.SESSION_TRACKED.value,
            f"{session.project_label} ({session.branch_label})",
            session_id=session.id,
            cwd=session.working_directory,
        )
        return {"tracked": True, "session_id": session.id, "turn_count": session.turn_count}

    # ── Prompts ──────────────────────────────────────────────────

    @app.post("/api/messages", dependencies=[Depends(require_operator)])
    async def post_message(payload: MessageCreateRequest) -> dict[str, Any]:
        admit("prompt")
        content = payload.content.strip()
        if not content:
            raise HTTPException(status_code=400, detail="empty prompt")

        try:
            result = bridge.runner.submit(content)
        except NoActiveSession as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        if not result.accepted:
            raise HTTPException(status_code=429, detail="Queue is full. Wait for current jobs to finish.")

        if result.position > 1:
            await bridge.ui.send(
                EventType.TURN_QUEUED.value,
                f"Queued at position {result.position}. {result.position - 1} ahead.",
                position=result.position,
            )
        return {"accepted": True, "position": result.position, "ahead": result.position - 1}

    # ── Commands ─────────────────────────────────────────────────

    @app.get("/api/help", dependencies=[Depends(require_operator)])
    async def help_() -> dict[str, str]:
        admit("help")
        return commands.help()

    @app.get("/api/status", dependencies=[Depends(require_operator)])
    async def status() -> dict[str, Any]:
        admit("status")
        return commands.status()

    @app.get("/api/sessions", dependencies=[Depends(require_operator)])
    async def list_sessions() -> list[dict[str, Any]]:
        admit("sessions")
        return commands.list_sessions()

    @app.post("/api/sessions/switch", dependencies=[Depends(require_operator)])
    async def switch_session(payload: SwitchSessionRequest) -> dict[str, Any]:
        admit("switch")
        session = commands.switch_active_session(payload.prefix)
        if session is None:
            raise HTTPException(status_code=404, detail=f"No session found starting with {payload.prefix!r}")
        return {
            "session_id": session.id,
            "project": session.project_label,
            "branch": session.branch_label,
            "cwd": session.working_directory,
        }

    @app.delete("/api/sessions", dependencies=[Depends(require_operator)])
    async def clear_sessions() -> dict[str, Any]:
        admit("clear")
        return {"cleared": commands.clear_sessions()}

    @app.get("/api/queue", dependencies=[Depends(require_operator)])
    async def view_queue() -> dict[str, Any]:
        admit("queue")
        return commands.view_queue()

    @app.post("/api/queue/cancel", dependencies=[Depends(require_operator)])
    async def cancel_queue(payload: CancelQueueRequest | None = None) -> dict[str, Any]:
        admit("cancel")
        include_running = payload.include_running if payload else False
        return commands.cancel_queue(include_running=include_running)

    @app.post("/api/lock", dependencies=[Depends(require_operator)])
    async def lock() -> dict[str, Any]:
        admit("lock")
        if not commands.lock():
            return {"locked": False, "detail": "No passphrase configured."}
        return {"locked": True}

    @app.post("/api/unlock", dependencies=[Depends(require_operator)])
    async def unlock(payload: UnlockRequest) -> dict[str, Any]:
        admit("unlock")
        if not bridge.gate.enabled:
            return {"unlocked": True, "detail": "No passphrase configured; always unlocked."}
        if not commands.unlock(payload.passphrase):
            raise HTTPException(status_code=403, detail="Wrong passphrase.")
        return {"unlocked": True}

    @app.get("/api/allowed-tools", dependencies=[Depends(require_operator)])
    async def allowed_tools(session_id: str | None = None) -> dict[str, Any]:
        admit("tools")
        return commands.list_allowed_tools(session_id)

    # ── Approvals ────────────────────────────────────────────────

    @app.get("/api/permissions", dependencies=[Depends(require_operator)])
    async def list_permissions() -> list[dict[str, Any]]:
        admit("permissions")
        return [r.summary() for r in bridge.broker.pending()]

    @app.post("/api/permissions/{request_id}/resolve", dependencies=[Depends(require_operator)])
    async def resolve_permission(request_id: str, payload: PermissionResolveRequest) -> dict[str, Any]:
        admit("resolve")
        ok = await bridge.broker.handle_action(
            request_id,
            payload.action,
            updated_input=payload.updated_input,
            reason=payload.reason,
        )
        if not ok:
            raise HTTPException(status_code=404, detail="permission request not pending")
        return {"ok": True}

    # ── Events ───────────────────────────────────────────────────

    @app.get("/api/events", dependencies=[Depends(require_operator)])
    async def get_events(since: int | None = None) -> list[dict[str, Any]]:
        require_unlocked()
        return bridge.hub.get_since(since)

    @app.get("/event", dependencies=[Depends(require_operator)])
    async def stream_events(request: Request, since: int | None = None):
        require_unlocked()
        initial_last_id: int | None = since
        header_last_id = request.headers.get("last-event-id")
        if initial_last_id is None and header_last_id:
            try:
                initial_last_id = int(header_last_id)
            except ValueError:
                initial_last_id = None

        async def event_stream():
            last_id = initial_last_id
            connected = {
                "id": 0,
                "ts": time.time(),
                "type": "connected",
                "payload": {"server_time": _now_iso(), "latest_id": bridge.hub.latest_id},
            }
            yield f"event: connected\ndata: {json.dumps(connected, ensure_ascii=False)}\n\n"

            while True:
                for item in bridge.hub.get_since(last_id):
                    last_id = int(item["id"])
                    yield f"id: {item['id']}\nevent: event\ndata: {json.dumps(item, ensure_ascii=False)}\n\n"

                if await request.is_disconnected() or not bridge.gate.is_unlocked():
                    break

                if not await bridge.hub.wait_for_new(timeout_s=settings.sse_wait_timeout_s):
                    hb = {"id": 0, "ts": time.time(), "type": "heartbeat", "payload": {}}
                    yield f"event: heartbeat\ndata: {json.dumps(hb, ensure_ascii=False)}\n\n"

        return StreamingResponse(
            event_stream(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache, no-transform",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    return app
