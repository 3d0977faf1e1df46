"""
Sync Server HTTP / WebSocket surface

Endpoints:
- GET /health: Health check
- GET /api/content/sync?since=<iso>: Full or incremental sync
- GET /api/content/system-prompt: Coaching brief for the caller's team
- GET /api/content/{kind}: Active records of one kind
- GET /api/admin/content/{kind}: Records of one kind, soft-deleted included
- POST /api/admin/content/{kind}: Create a record
- PUT /api/admin/content/{kind}/{record_id}: Update a record
- DELETE /api/admin/content/{kind}/{record_id}: Soft delete a record
- POST /api/admin/broadcast: Ask every team client to re-sync
- GET /api/admin/clients: Connected clients of the caller's team
- WS /ws?token=<bearer>: Change push channel

All state hangs off app.state; build apps with create_app().
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from .. import __version__
from ..common.config import CoachSyncConfig, configure_logging, load_config
from ..common.errors import (
    AuthenticationError,
    ContentValidationError,
    RecordNotFoundError,
    StaleWatermarkError,
)
from ..common.schemas import EntityKind, utcnow
from .auth import JWTCredentialVerifier, Principal, bearer_token
from .content_store import InMemoryContentStore
from .seed import load_seed_file
from .server import SyncServer

logger = logging.getLogger("coachsync.sync.app")

WS_AUTH_FAILED = 4401


# =============================================================================
# Request Models
# =============================================================================

class ContentWrite(BaseModel):
    """Create / update request"""
    payload: Dict[str, Any] = {}
    id: Optional[str] = None
    active: Optional[bool] = None


class BroadcastRequest(BaseModel):
    message: str = "Content updated"


class SyncRequest(BaseModel):
    """Client 'sync:request' message"""
    since: Optional[datetime] = None


# =============================================================================
# Construction
# =============================================================================

async def build_sync_server(config: CoachSyncConfig) -> SyncServer:
    """Sync server backed by the in-memory store, seeded if configured"""
    store = InMemoryContentStore()

    if config.server.seed_path:
        team_id = config.server.seed_team_id or "default"
        counts = await load_seed_file(store, team_id, config.server.seed_path)
        if counts is not None:
            logger.info("Loaded seed %s for team %s", config.server.seed_path, team_id)

    retention_days = config.server.history_retention_days
    return SyncServer(
        store=store,
        verifier=JWTCredentialVerifier(config.server.jwt_secret, config.server.jwt_algorithm),
        history_retention=timedelta(days=retention_days) if retention_days > 0 else None,
        send_timeout=config.server.send_timeout,
    )


def create_app(
    sync_server: Optional[SyncServer] = None,
    config: Optional[CoachSyncConfig] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        sync_server: Pre-built server (tests); built from config on startup otherwise
        config: Configuration (loaded from file and environment if omitted)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.sync_server is None:
            app.state.config = app.state.config or load_config()
            app.state.sync_server = await build_sync_server(app.state.config)
        logger.info("Sync server ready")
        yield
        logger.info("Sync server shutting down (%d open connections)",
                    app.state.sync_server.registry.count())

    app = FastAPI(
        title="CoachSync Server",
        description="Team content sync for live sales coaching",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.sync_server = sync_server
    app.state.config = config

    _register_routes(app)
    return app


# =============================================================================
# Dependencies
# =============================================================================

def get_sync_server(request: Request) -> SyncServer:
    server = request.app.state.sync_server
    if server is None:
        raise HTTPException(status_code=503, detail="Sync server not initialized")
    return server


def get_principal(
    server: SyncServer = Depends(get_sync_server),
    authorization: Optional[str] = Header(None),
) -> Principal:
    try:
        return server.authenticate(bearer_token(authorization))
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))


def require_writer(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.can_write:
        raise HTTPException(status_code=403, detail="Admin or coach role required")
    return principal


# =============================================================================
# Endpoints
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint"""
        server = request.app.state.sync_server
        return {
            "status": "healthy",
            "service": "coachsync",
            "initialized": server is not None,
            "connections": server.registry.count() if server else 0,
            "timestamp": utcnow().isoformat(),
        }

    @app.get("/api/content/sync")
    async def content_sync(
        since: Optional[datetime] = Query(None),
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(get_principal),
    ):
        """Full sync without 'since', incremental otherwise"""
        try:
            response = await server.sync(principal.team_id, since)
        except StaleWatermarkError as e:
            logger.info("Refusing incremental sync for team %s: %s", principal.team_id, e)
            raise HTTPException(status_code=410, detail="stale_watermark")
        return response.to_wire()

    @app.get("/api/content/system-prompt")
    async def system_prompt(
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(get_principal),
    ):
        prompt = await server.coaching_prompt(principal.team_id)
        return {"prompt": prompt, "generatedAt": utcnow().isoformat()}

    @app.get("/api/content/{kind}")
    async def list_content(
        kind: EntityKind,
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(get_principal),
    ):
        """Active records of one kind"""
        records = await server.list_records(principal.team_id, kind)
        return _listing(kind, records)

    @app.get("/api/admin/content/{kind}")
    async def admin_list_content(
        kind: EntityKind,
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(require_writer),
    ):
        """Every record of one kind, soft-deleted ones included"""
        records = await server.list_records(principal.team_id, kind, include_inactive=True)
        return _listing(kind, records)

    @app.post("/api/admin/content/{kind}", status_code=201)
    async def create_content(
        kind: EntityKind,
        body: ContentWrite,
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(require_writer),
    ):
        try:
            record = await server.create_record(principal.team_id, kind, body.payload, record_id=body.id)
        except ContentValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return record.model_dump(mode="json", by_alias=True)

    @app.put("/api/admin/content/{kind}/{record_id}")
    async def update_content(
        kind: EntityKind,
        record_id: str,
        body: ContentWrite,
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(require_writer),
    ):
        try:
            record = await server.update_record(
                principal.team_id, kind, record_id, payload=body.payload, active=body.active,
            )
        except ContentValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except RecordNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return record.model_dump(mode="json", by_alias=True)

    @app.delete("/api/admin/content/{kind}/{record_id}")
    async def delete_content(
        kind: EntityKind,
        record_id: str,
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(require_writer),
    ):
        try:
            record = await server.delete_record(principal.team_id, kind, record_id)
        except RecordNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return record.model_dump(mode="json", by_alias=True)

    @app.post("/api/admin/broadcast")
    async def broadcast(
        body: BroadcastRequest,
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(require_writer),
    ):
        delivered = await server.broadcast_refresh(principal.team_id, body.message)
        return {"ok": True, "delivered": delivered}

    @app.get("/api/admin/clients")
    async def clients(
        server: SyncServer = Depends(get_sync_server),
        principal: Principal = Depends(require_writer),
    ):
        connected = server.connected_clients(principal.team_id)
        return {"teamId": principal.team_id, "count": len(connected), "clients": connected}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
        """
        Change push channel.

        The credential is checked before the connection joins its team room;
        a refused client gets 'auth:error' and close code 4401.
        """
        server: SyncServer = websocket.app.state.sync_server
        await websocket.accept()

        try:
            connection = server.admit(token, websocket.send_json)
        except AuthenticationError as e:
            await websocket.send_json({"type": "auth:error", "message": str(e)})
            await websocket.close(code=WS_AUTH_FAILED)
            return

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON message from %s", connection.user_id)
                    continue
                reply = await _handle_client_message(server, connection.team_id, data)
                if reply is not None:
                    await websocket.send_json(reply)
        except WebSocketDisconnect:
            pass
        finally:
            server.disconnect(connection)


def _listing(kind: EntityKind, records) -> Dict[str, Any]:
    return {
        "kind": kind.value,
        "count": len(records),
        "records": [r.model_dump(mode="json", by_alias=True) for r in records],
    }


async def _handle_client_message(server: SyncServer, team_id: str, data: Any) -> Optional[Dict[str, Any]]:
    """Reply to one client message (None = no reply)"""
    if not isinstance(data, dict):
        return None

    message_type = data.get("type")
    if message_type == "ping":
        return {"type": "pong", "timestamp": utcnow().isoformat()}

    if message_type == "sync:request":
        try:
            request = SyncRequest.model_validate(data)
        except ValidationError:
            return {"type": "sync:error", "reason": "bad_request"}
        try:
            response = await server.sync(team_id, request.since)
        except StaleWatermarkError:
            return {"type": "sync:error", "reason": "stale_watermark"}
        return {"type": "sync:response", **response.to_wire()}

    logger.debug("Ignoring unknown message type: %s", message_type)
    return None


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the CoachSync server"""
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    config = load_config()
    configure_logging(config.log_level)

    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        create_app(config=config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    run_server()
