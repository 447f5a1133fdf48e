"""Presence tracking and room-scoped chat over WebSockets.

Frames are JSON objects. A client request looks like
``{"event": "send-message", "ref": 7, "data": {...}}`` and is always answered
with ``{"event": "ack", "ref": 7, "data": {"ok": ..., ...}}``. The server also
pushes ``new-message``, ``presence-changed`` and ``presence-snapshot`` frames.
"""

import enum
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Set

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status
from jose import JWTError
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from app.auth import decode_user_id
from app.models import ChatMessage, Community, CommunityMember, Match, MatchParticipant, User, utcnow
from app.presence import ConnectionRegistry
from app.schemas import RealtimeFrame

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 500

ALLOW_ANONYMOUS_SOCKETS = os.getenv("ALLOW_ANONYMOUS_SOCKETS", "false").lower() == "true"
ANONYMOUS_SOCKET_USER_ID = os.getenv("ANONYMOUS_SOCKET_USER_ID", "anonymous")


class RoomKind(str, enum.Enum):
    MATCH = "match"
    COMMUNITY = "community"


@dataclass(frozen=True)
class RoomRules:
    label: str
    entity: type
    link: type
    link_column: str
    message_column: str
    join_denied: str
    send_denied: str


ROOM_RULES = {
    RoomKind.MATCH: RoomRules(
        label="Match",
        entity=Match,
        link=MatchParticipant,
        link_column="match_id",
        message_column="match_id",
        join_denied="Join this match before opening chat",
        send_denied="Only participants can send match messages",
    ),
    RoomKind.COMMUNITY: RoomRules(
        label="Community",
        entity=Community,
        link=CommunityMember,
        link_column="community_id",
        message_column="community_id",
        join_denied="Join this community before opening chat",
        send_denied="Only community members can send messages",
    ),
}


# ✅ Error taxonomy, every error is reported to the requesting connection only
class RealtimeError(Exception):
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class RealtimeValidationError(RealtimeError):
    default_message = "Invalid request"


class RealtimeAuthorizationError(RealtimeError):
    default_message = "Not allowed"


class RealtimeNotFoundError(RealtimeError):
    default_message = "Not found"


class RealtimePersistenceError(RealtimeError):
    default_message = "Unable to complete request"


@dataclass(frozen=True)
class Identity:
    user_id: str
    name: str
    profile_image: str = ""
    is_anonymous: bool = False


class Connection(ABC):
    """One open realtime channel belonging to a user."""

    def __init__(self, identity: Identity):
        self.id = uuid.uuid4().hex
        self.identity = identity
        self.rooms: Set[str] = set()

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @abstractmethod
    async def send(self, event: str, data, ref=None):
        ...


class WebSocketConnection(Connection):
    def __init__(self, websocket: WebSocket, identity: Identity):
        super().__init__(identity)
        self.websocket = websocket

    async def send(self, event: str, data, ref=None):
        frame = {"event": event, "data": data}
        if ref is not None:
            frame["ref"] = ref
        await self.websocket.send_json(frame)


def room_name(kind: RoomKind, entity_id: int) -> str:
    return f"{kind.value}:{entity_id}"


def parse_room_kind(value) -> RoomKind:
    try:
        return RoomKind(str(value or "").strip().lower())
    except ValueError:
        raise RealtimeValidationError("Unknown room kind")


def parse_entity_id(kind: RoomKind, value) -> int:
    raw = str(value if value is not None else "").strip()
    if not raw:
        raise RealtimeValidationError(f"{kind.value} id is required")
    try:
        return int(raw)
    except ValueError:
        raise RealtimeValidationError(f"Invalid {kind.value} id")


def normalize_body(value) -> str:
    body = str(value if value is not None else "").strip()
    if not body:
        raise RealtimeValidationError("message is required")
    return body[:MAX_MESSAGE_LENGTH]


class SqlRealtimeStore:
    """Membership lookups, chat persistence and the persisted online flag."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def load_identity(self, user_id: int) -> Optional[Identity]:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            return Identity(user_id=str(user.id), name=user.name, profile_image=user.profile_image or "")

    async def membership_check(self, kind: RoomKind, entity_id: int, user_id: str) -> bool:
        rules = ROOM_RULES[kind]
        async with self.session_factory() as session:
            entity = await session.get(rules.entity, entity_id)
            if entity is None:
                raise RealtimeNotFoundError(f"{rules.label} not found")
            if not str(user_id).isdigit():
                return False
            result = await session.execute(
                select(rules.link.id).where(
                    getattr(rules.link, rules.link_column) == entity_id,
                    rules.link.user_id == int(user_id),
                )
            )
            return result.first() is not None

    async def save_message(self, kind: RoomKind, entity_id: int, sender: Identity, body: str) -> dict:
        rules = ROOM_RULES[kind]
        async with self.session_factory() as session:
            chat = ChatMessage(
                sender_id=int(sender.user_id),
                message=body,
                timestamp=utcnow(),
                **{rules.message_column: entity_id},
            )
            session.add(chat)
            await session.commit()
            await session.refresh(chat)

        return {
            "id": chat.id,
            rules.message_column: entity_id,
            "sender": {
                "id": int(sender.user_id),
                "name": sender.name,
                "profile_image": sender.profile_image,
            },
            "message": chat.message,
            "timestamp": chat.timestamp.isoformat(),
        }

    async def set_user_online(self, user_id: str, is_online: bool):
        if not str(user_id).isdigit():
            return
        async with self.session_factory() as session:
            await session.execute(update(User).where(User.id == int(user_id)).values(is_online=is_online))
            await session.commit()


class Coordinator:
    """Owns the connection registry and the room broadcast groups."""

    def __init__(self, store, registry: Optional[ConnectionRegistry] = None):
        self.store = store
        self.registry = registry or ConnectionRegistry()
        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, Set[str]] = {}

    # ---- presence ----

    async def connect(self, connection: Connection):
        self.connections[connection.id] = connection
        count = self.registry.increment(connection.user_id)
        logger.info("Connection %s opened for user %s (%d open)", connection.id, connection.user_id, count)
        if count == 1:
            await self._presence_transition(connection.identity, True)

    async def disconnect(self, connection: Connection):
        if self.connections.pop(connection.id, None) is None:
            return

        for room in list(connection.rooms):
            members = self.rooms.get(room)
            if members is not None:
                members.discard(connection.id)
                if not members:
                    del self.rooms[room]
        connection.rooms.clear()

        count = self.registry.decrement(connection.user_id)
        logger.info("Connection %s closed for user %s (%d open)", connection.id, connection.user_id, count)
        if count == 0:
            await self._presence_transition(connection.identity, False)

    async def _presence_transition(self, identity: Identity, is_online: bool):
        # peers hear about the transition even if the write below is cancelled
        await self.broadcast("presence-changed", {"user_id": identity.user_id, "is_online": is_online})
        if identity.is_anonymous:
            return
        try:
            await self.store.set_user_online(identity.user_id, is_online)
        except SQLAlchemyError as e:
            logger.error("Failed to update presence for user %s: %s", identity.user_id, e)

    # ---- rooms ----

    async def _authorize(self, connection: Connection, kind: RoomKind, entity_id: int, denied: str):
        if connection.identity.is_anonymous:
            raise RealtimeAuthorizationError(denied)
        try:
            allowed = await self.store.membership_check(kind, entity_id, connection.user_id)
        except SQLAlchemyError as e:
            logger.error("Membership lookup failed for %s: %s", room_name(kind, entity_id), e)
            raise RealtimePersistenceError()
        if not allowed:
            raise RealtimeAuthorizationError(denied)

    async def join_room(self, connection: Connection, kind, entity_id) -> dict:
        try:
            kind = parse_room_kind(kind)
            entity_id = parse_entity_id(kind, entity_id)
            await self._authorize(connection, kind, entity_id, ROOM_RULES[kind].join_denied)
        except RealtimeError as e:
            return {"ok": False, "error": e.message}

        room = room_name(kind, entity_id)
        self.rooms.setdefault(room, set()).add(connection.id)
        connection.rooms.add(room)
        logger.info("User %s joined %s", connection.user_id, room)

        await self._deliver([connection], "presence-snapshot", {"user_ids": self.registry.online_user_ids()})
        return {"ok": True}

    async def send_message(self, connection: Connection, kind, entity_id, body) -> dict:
        try:
            kind = parse_room_kind(kind)
            entity_id = parse_entity_id(kind, entity_id)
            body = normalize_body(body)
            await self._authorize(connection, kind, entity_id, ROOM_RULES[kind].send_denied)
            try:
                record = await self.store.save_message(kind, entity_id, connection.identity, body)
            except SQLAlchemyError as e:
                logger.error("Failed to persist message for %s: %s", room_name(kind, entity_id), e)
                raise RealtimePersistenceError("Unable to send message")
        except RealtimeError as e:
            return {"ok": False, "error": e.message}

        await self.emit_to_room(room_name(kind, entity_id), "new-message", record)
        return {"ok": True, "message": record}

    def room_members(self, kind: RoomKind, entity_id: int) -> Set[str]:
        return set(self.rooms.get(room_name(kind, entity_id), set()))

    # ---- fan-out ----

    async def _deliver(self, connections, event: str, data):
        for connection in connections:
            try:
                await connection.send(event, data)
            except Exception as e:
                # a dead socket is cleaned up by its own disconnect handler
                logger.warning("Dropping %s for connection %s: %s", event, connection.id, e)

    async def broadcast(self, event: str, data):
        await self._deliver(list(self.connections.values()), event, data)

    async def emit_to_room(self, room: str, event: str, data):
        members = [self.connections[cid] for cid in self.rooms.get(room, ()) if cid in self.connections]
        await self._deliver(members, event, data)

    # ---- transport dispatch ----

    async def handle_frame(self, connection: Connection, raw: str):
        try:
            frame = RealtimeFrame.model_validate(json.loads(raw))
        except (ValueError, ValidationError, RecursionError):
            await connection.send("ack", {"ok": False, "error": "Malformed frame"})
            return

        data = frame.data
        try:
            if frame.event == "join-room":
                result = await self.join_room(connection, data.get("kind"), data.get("entity_id"))
            elif frame.event == "send-message":
                result = await self.send_message(
                    connection, data.get("kind"), data.get("entity_id"), data.get("body")
                )
            else:
                result = {"ok": False, "error": f"Unknown event: {frame.event}"}
        except Exception:
            logger.error("Unhandled error for event %s", frame.event, exc_info=True)
            result = {"ok": False, "error": "Internal server error"}

        await connection.send("ack", result, ref=frame.ref)


def extract_socket_token(websocket) -> str:
    token = (websocket.query_params.get("token") or "").strip()
    if token:
        return token
    header = websocket.headers.get("authorization") or ""
    if header.startswith("Bearer "):
        return header[7:].strip()
    return ""


async def resolve_identity(websocket, store, allow_anonymous: bool = None) -> Optional[Identity]:
    """Identify the user behind a handshake, or None when it must be refused."""
    if allow_anonymous is None:
        allow_anonymous = ALLOW_ANONYMOUS_SOCKETS

    identity = None
    token = extract_socket_token(websocket)
    if token:
        try:
            identity = await store.load_identity(decode_user_id(token))
        except JWTError as e:
            logger.warning("Socket token rejected: %s", e)
        except SQLAlchemyError as e:
            logger.error("Identity lookup failed during handshake: %s", e)
            raise RealtimePersistenceError("Unable to authenticate socket")

    if identity is None and allow_anonymous:
        logger.warning("Admitting socket under anonymous identity")
        identity = Identity(user_id=ANONYMOUS_SOCKET_USER_ID, name="Anonymous", is_anonymous=True)
    return identity


router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    coordinator: Coordinator = websocket.app.state.coordinator
    try:
        identity = await resolve_identity(websocket, coordinator.store)
    except RealtimePersistenceError:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, identity)
    await coordinator.connect(connection)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = message.get("text")
            if raw is None:
                # binary frames are not part of the protocol
                await connection.send("ack", {"ok": False, "error": "Malformed frame"})
                continue
            await coordinator.handle_frame(connection, raw)
    except WebSocketDisconnect as e:
        logger.info("Socket %s disconnected (%s)", connection.id, e.code)
    finally:
        await coordinator.disconnect(connection)


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator
