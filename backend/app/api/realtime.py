"""WebSocket endpoint for project rooms.

Clients send ``{"event", "room", "payload"}`` messages. Every reply to the
client, including acks and errors, goes through the connection's outbound
queue so a connection has exactly one writer.
"""
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from typing import Any, Dict, Optional
import asyncio
import json
import logging

from backend.app.core.auth import get_socket_user
from backend.app.core.config import settings
from backend.app.core.errors import DomainError, Forbidden, NotFound, ValidationError
from backend.app.schemas.events import RoomEvent, project_id_from_room
from backend.app.schemas.user import UserProfile
from backend.app.services.broadcaster import Connection, RoomBroadcaster, stop_writer
from backend.app.services.roster import Roster

router = APIRouter()
logger = logging.getLogger("task24.realtime")


def _parse(raw: str) -> Dict[str, Any]:
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Malformed message")
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        raise ValidationError("Message must be an object with an event name")
    return message


async def _authorize_room(store, user_id: str, room_id: Optional[str]) -> str:
    project_id = project_id_from_room(room_id)
    if project_id is None:
        raise ValidationError("Unknown room", room=room_id)
    if settings.REALTIME_REQUIRE_MEMBERSHIP:
        project = await store.get_project(project_id)
        if project is None:
            raise NotFound("Project not found", room=room_id)
        if not Roster.from_project(project).has_access(user_id):
            raise Forbidden("No access to this project", room=room_id)
    return room_id


async def _handle(message: Dict[str, Any], connection: Connection, broadcaster: RoomBroadcaster, store) -> None:
    event = message["event"]
    room_id = message.get("room")

    if event == "ping":
        connection.enqueue({"event": "pong", "payload": message.get("payload") or {}})
        return

    if event == "join-room":
        room_id = await _authorize_room(store, connection.user_id, room_id)
        await broadcaster.join(connection, room_id)
        connection.enqueue({"event": "joined", "room": room_id})
        return

    if event == "leave-room":
        if room_id:
            await broadcaster.leave(connection, room_id)
        connection.enqueue({"event": "left", "room": room_id})
        return

    payload = message.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be an object")
    room_event = RoomEvent.from_name(event, payload)
    if room_event is None:
        raise ValidationError(f"Unknown event: {event}")
    if project_id_from_room(room_id) is None:
        raise ValidationError("Unknown room", room=room_id)
    if settings.REALTIME_REQUIRE_MEMBERSHIP and room_id not in connection.rooms:
        raise Forbidden("Join the room before publishing to it", room=room_id)

    broadcaster.publish(connection, room_id, room_event)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, current_user: UserProfile = Depends(get_socket_user)):
    broadcaster: RoomBroadcaster = websocket.app.state.broadcaster
    store = websocket.app.state.store

    await websocket.accept()
    connection = broadcaster.register(Connection(
        websocket.send_json,
        user_id=current_user.id,
        max_queue=settings.REALTIME_QUEUE_SIZE,
    ))
    writer = asyncio.create_task(connection.run())
    connection.enqueue({"event": "connected", "payload": {"connection_id": connection.id}})
    logger.info("Connection %s opened for user %s", connection.id, current_user.id)

    try:
        while True:
            raw = await websocket.receive_text()
            message = {}
            try:
                message = _parse(raw)
                await _handle(message, connection, broadcaster, store)
            except DomainError as e:
                connection.enqueue({"event": "error", "room": message.get("room"), "payload": e.to_dict()})
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.disconnect(connection)
        await stop_writer(writer)
        logger.info("Connection %s closed", connection.id)
