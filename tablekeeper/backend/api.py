"""FastAPI endpoints for accounts, room documents, combat and websocket sync."""

from __future__ import annotations

from collections import defaultdict
import logging
from typing import Any

from fastapi import Body, Depends, FastAPI, Header, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from tablekeeper import __version__

from .accounts import AccountService
from .characters import CharacterService
from .combat import CombatService
from .config import BackendSettings, load_settings
from .documents import ROOM_SCHEMAS
from .errors import AuthorizationError, NotFoundError, TablekeeperError, ValidationError
from .models import Actor
from .rooms import DocumentSchema, RoomDocumentService, resolve_room
from .store import KeyValueStore, create_store

logger = logging.getLogger(__name__)


class CredentialsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = ""
    password_hash: str = Field(default="", alias="passwordHash")


class ResetRequest(BaseModel):
    username: str = ""


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = ""
    password_hash: str = Field(default="", alias="passwordHash")


class CharacterSaveRequest(BaseModel):
    sheet: Any = None


class CombatActionEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: dict[str, Any]
    base_version: int | None = Field(default=None, alias="baseVersion")


class RoomWebSocketHub:
    def __init__(self) -> None:
        self._connections: dict[tuple[str, str], dict[WebSocket, Actor]] = defaultdict(dict)

    async def connect(self, channel: tuple[str, str], websocket: WebSocket, actor: Actor) -> None:
        await websocket.accept()
        self._connections[channel][websocket] = actor

    def disconnect(self, channel: tuple[str, str], websocket: WebSocket) -> None:
        connections = self._connections.get(channel)
        if connections is None:
            return
        connections.pop(websocket, None)
        if not connections:
            self._connections.pop(channel, None)

    async def send_document(self, websocket: WebSocket, envelope: dict[str, Any] | None) -> None:
        await websocket.send_json({"type": "document.full", "data": envelope})

    async def broadcast_document(self, channel: tuple[str, str], envelope: dict[str, Any]) -> None:
        schema = ROOM_SCHEMAS[channel[0]]
        stale_connections: list[WebSocket] = []
        for websocket, actor in list(self._connections.get(channel, {}).items()):
            try:
                await self.send_document(websocket, _for_actor(schema, actor, envelope))
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(channel=channel, websocket=websocket)


def _for_actor(schema: DocumentSchema, actor: Actor, envelope: dict[str, Any] | None) -> dict[str, Any] | None:
    if envelope is None or actor.is_dm:
        return envelope
    return {**envelope, "data": schema.visible_to_players(envelope.get("data"))}


def _parse_version(if_match: str | None, base_version: Any) -> int | None:
    """Read the precondition version from an If-Match header or a baseVersion field."""
    raw = if_match if if_match is not None else base_version
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
    if isinstance(raw, bool):
        raise ValidationError("Version precondition must be an integer", reason="invalid_version")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Version precondition must be an integer", reason="invalid_version") from exc


def _room_service(store: KeyValueStore, resource: str) -> RoomDocumentService:
    schema = ROOM_SCHEMAS.get(resource)
    if schema is None:
        raise NotFoundError(f"Unknown resource {resource}", reason="unknown_resource")
    return RoomDocumentService(store=store, schema=schema)


def create_app(store: KeyValueStore | None = None, settings: BackendSettings | None = None) -> FastAPI:
    app_settings = settings if settings is not None else load_settings()
    kv_store = store if store is not None else create_store(app_settings.database_url)
    accounts = AccountService(
        store=kv_store,
        server_salt=app_settings.server_salt,
        dm_username=app_settings.dm_username,
        session_ttl_seconds=app_settings.session_ttl_seconds,
        reset_ttl_seconds=app_settings.reset_ttl_seconds,
    )
    characters = CharacterService(store=kv_store)
    combat = CombatService(store=kv_store, shared=app_settings.combat_shared)
    websocket_hub = RoomWebSocketHub()
    bearer = HTTPBearer(auto_error=False)

    app = FastAPI(title="Tablekeeper API", version=__version__)
    app.state.settings = app_settings
    app.state.store = kv_store
    app.state.websocket_hub = websocket_hub

    @app.exception_handler(TablekeeperError)
    async def handle_tablekeeper_error(request: Request, exc: TablekeeperError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected (%d %s)", request.method, request.url.path, exc.status_code, exc.reason)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.reason, "detail": exc.message})

    def get_actor(credentials: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Actor:
        return accounts.resolve_session(credentials.credentials if credentials is not None else None)

    def require_dm(actor: Actor = Depends(get_actor)) -> Actor:
        if not actor.is_dm:
            raise AuthorizationError("Only the DM can change shared documents")
        return actor

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {
            "ok": True,
            "version": __version__,
            "backend": kv_store.backend_name,
            "combatShared": app_settings.combat_shared,
        }

    @app.post("/api/auth/signup")
    def signup(payload: CredentialsRequest) -> dict[str, Any]:
        username = accounts.signup(username=payload.username, password_hash=payload.password_hash)
        return {"ok": True, "username": username}

    @app.post("/api/auth/login")
    def login(payload: CredentialsRequest) -> dict[str, Any]:
        result = accounts.login(username=payload.username, password_hash=payload.password_hash)
        return {
            "ok": True,
            "username": result.username,
            "token": result.token,
            "role": result.role,
            "expiresAt": result.expires_at,
        }

    @app.post("/api/auth/logout")
    def logout(
        actor: Actor = Depends(get_actor),
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> dict[str, Any]:
        if credentials is not None:
            accounts.logout(credentials.credentials)
        logger.info("Closed session for %s", actor.username)
        return {"ok": True}

    @app.post("/api/auth/reset-request")
    def reset_request(payload: ResetRequest, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        ticket = accounts.request_reset(actor=actor, username=payload.username)
        return {
            "ok": True,
            "token": ticket.token,
            "username": ticket.username,
            "expiresInSeconds": ticket.expires_in_seconds,
        }

    @app.post("/api/auth/reset")
    def reset_password(payload: ResetPasswordRequest) -> dict[str, Any]:
        username = accounts.reset_password(token=payload.token, password_hash=payload.password_hash)
        return {"ok": True, "username": username}

    @app.get("/api/users")
    def list_users(actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        return {"users": accounts.list_users(actor)}

    @app.get("/api/character")
    def get_character(username: str = Query(default=""), actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        record = characters.get_sheet(actor=actor, username=username)
        if record is None:
            return {"sheet": None, "lastUpdatedAt": None}
        return record

    @app.put("/api/character")
    def put_character(payload: CharacterSaveRequest, actor: Actor = Depends(get_actor)) -> dict[str, Any]:
        record = characters.save_sheet(actor=actor, sheet=payload.sheet)
        return {"ok": True, "lastUpdatedAt": record["lastUpdatedAt"]}

    @app.get("/api/combat")
    def get_combat(
        response: Response,
        room: str | None = Query(default=None),
        actor: Actor = Depends(get_actor),
    ) -> dict[str, Any]:
        envelope = combat.get(actor=actor, room=resolve_room(room))
        response.headers["ETag"] = f'"{envelope["version"]}"'
        return {"data": envelope}

    @app.put("/api/combat")
    def put_combat(
        response: Response,
        payload: Any = Body(...),
        room: str | None = Query(default=None),
        if_match: str | None = Header(default=None),
        actor: Actor = Depends(get_actor),
    ) -> dict[str, Any]:
        base_version = payload.pop("baseVersion", None) if isinstance(payload, dict) else None
        envelope = combat.replace(
            actor=actor,
            room=resolve_room(room),
            payload=payload,
            expected_version=_parse_version(if_match, base_version),
        )
        response.headers["ETag"] = f'"{envelope["version"]}"'
        return {"data": envelope}

    @app.post("/api/combat/actions")
    def post_combat_action(
        payload: CombatActionEnvelope,
        response: Response,
        room: str | None = Query(default=None),
        if_match: str | None = Header(default=None),
        actor: Actor = Depends(get_actor),
    ) -> dict[str, Any]:
        update = combat.apply(
            actor=actor,
            room=resolve_room(room),
            action=payload.action,
            expected_version=_parse_version(if_match, payload.base_version),
        )
        response.headers["ETag"] = f'"{update.envelope["version"]}"'
        return {"data": update.envelope, "events": update.events}

    @app.get("/api/{resource}")
    def get_room_document(
        resource: str,
        response: Response,
        room: str | None = Query(default=None),
        actor: Actor = Depends(get_actor),
    ) -> dict[str, Any]:
        service = _room_service(kv_store, resource)
        envelope = service.get(resolve_room(room))
        if envelope is not None:
            response.headers["ETag"] = f'"{envelope["version"]}"'
        return {"data": _for_actor(service.schema, actor, envelope)}

    @app.put("/api/{resource}")
    async def put_room_document(
        resource: str,
        response: Response,
        payload: Any = Body(...),
        room: str | None = Query(default=None),
        if_match: str | None = Header(default=None),
        actor: Actor = Depends(require_dm),
    ) -> dict[str, Any]:
        service = _room_service(kv_store, resource)
        room_name = resolve_room(room)
        base_version = payload.pop("baseVersion", None) if isinstance(payload, dict) else None
        envelope = service.put(
            room=room_name,
            payload=payload,
            expected_version=_parse_version(if_match, base_version),
        )
        await websocket_hub.broadcast_document(channel=(resource, room_name), envelope=envelope)
        response.headers["ETag"] = f'"{envelope["version"]}"'
        return {"data": envelope}

    @app.websocket("/ws/rooms/{resource}")
    async def room_ws(websocket: WebSocket, resource: str) -> None:
        schema = ROOM_SCHEMAS.get(resource)
        token = websocket.query_params.get("token")
        if schema is None or not token:
            await websocket.close(code=1008)
            return
        try:
            actor = accounts.resolve_session(token)
        except TablekeeperError:
            await websocket.close(code=1008)
            return

        channel = (resource, resolve_room(websocket.query_params.get("room")))
        service = RoomDocumentService(store=kv_store, schema=schema)
        await websocket_hub.connect(channel=channel, websocket=websocket, actor=actor)
        await websocket_hub.send_document(websocket=websocket, envelope=_for_actor(schema, actor, service.get(channel[1])))

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(channel=channel, websocket=websocket)

    return app


app = create_app()
