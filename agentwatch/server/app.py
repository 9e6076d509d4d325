"""FastAPI server — read-only session API, SSE stream and WebSocket push."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from agentwatch import __version__
from agentwatch.config import AgentWatchConfig, load_config
from agentwatch.models import SessionRecord, now_ms
from agentwatch.reconcile.loop import ReconciliationLoop
from agentwatch.server.ws_manager import ConnectionManager
from agentwatch.snapshot import SnapshotReader
from agentwatch.store.json_store import SessionStore
from agentwatch.tmux.client import TmuxClient

logger = logging.getLogger(__name__)


def session_payload(record: SessionRecord, tmux: TmuxClient | None = None) -> dict[str, Any]:
    """JSON form of a session, optionally with its live pane title."""
    data = record.model_dump(mode="json")
    if tmux is not None:
        data["pane_title"] = tmux.pane_title(record.tmux_target) if record.tmux_target else None
    return data


def sessions_payload(records: list[SessionRecord], tmux: TmuxClient | None = None) -> dict[str, Any]:
    sessions = [session_payload(r, tmux) for r in records]
    return {"sessions": sessions, "count": len(sessions), "timestamp": now_ms()}


def format_sse(event: str, data: dict[str, Any]) -> str:
    """Encode one server-sent event."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def create_app(
    config: AgentWatchConfig | None = None,
    store: SessionStore | None = None,
    tmux: TmuxClient | None = None,
    reconcile: bool = True,
) -> FastAPI:
    """
    Build the server app around an explicit store.

    With ``reconcile`` the reconciliation loop and the WebSocket broadcaster
    run for the lifetime of the app.
    """
    config = config or load_config()
    store = store or SessionStore(config.sessions_dir)
    tmux = tmux or TmuxClient(timeout=config.reconcile.pane_timeout)
    reader = SnapshotReader(store)
    loop = ReconciliationLoop.from_config(config, store, tmux)
    manager = ConnectionManager()
    interval = config.server.stream_interval

    async def broadcast_snapshots() -> None:
        while True:
            if manager.client_count:
                await manager.push_sessions(sessions_payload(reader.snapshot()))
            await asyncio.sleep(interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run reconciliation and WebSocket pushes alongside the server."""
        broadcaster = None
        if reconcile:
            loop.start()
            broadcaster = asyncio.create_task(broadcast_snapshots())
        yield
        if broadcaster is not None:
            broadcaster.cancel()
            try:
                await broadcaster
            except asyncio.CancelledError:
                pass
        await loop.stop()

    app = FastAPI(
        title="agentwatch",
        description="Live status of coding-agent sessions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.reader = reader
    app.state.loop = loop
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # ── REST Endpoints ──────────────────────────────────────

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "clients": manager.client_count,
            "timestamp": now_ms(),
        }

    @app.get("/api/sessions")
    async def list_sessions():
        """Prioritised, deduplicated sessions with fresh interruption state."""

        def build() -> dict[str, Any]:
            if config.reconcile.check_panes:
                loop.check_panes_once()
            return sessions_payload(reader.snapshot(), tmux)

        # tmux queries block; keep them off the event loop
        return await asyncio.to_thread(build)

    @app.get("/api/sessions/stream")
    async def stream_sessions(request: Request):
        """Server-sent events: ``connected``, then ``sessions`` every interval."""

        async def events() -> AsyncIterator[str]:
            yield format_sse("connected", {
                "message": "Connected to session stream",
                "timestamp": now_ms(),
            })
            while not await request.is_disconnected():
                try:
                    yield format_sse("sessions", sessions_payload(reader.snapshot()))
                except Exception as e:
                    logger.debug("Stream snapshot failed: %s", e)
                    yield format_sse("error", {
                        "error": "Error reading sessions",
                        "timestamp": now_ms(),
                    })
                await asyncio.sleep(interval)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str):
        """A single session by id."""
        try:
            record = store.get(session_id)
        except ValueError:
            record = None
        if record is None:
            raise HTTPException(status_code=404, detail={"error": "Session not found", "id": session_id})
        return {"session": session_payload(record), "timestamp": now_ms()}

    # ── WebSocket Endpoint ──────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Push session snapshots to a client."""
        try:
            await manager.connect(websocket, {
                "type": "connected",
                "server_version": __version__,
                **sessions_payload(reader.snapshot()),
            })
            while True:
                try:
                    await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
                except asyncio.TimeoutError:
                    await websocket.send_json({"type": "heartbeat"})
        except WebSocketDisconnect:
            pass
        finally:
            manager.disconnect(websocket)

    return app
