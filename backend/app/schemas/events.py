from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from typing import Any, Dict, Optional
from enum import Enum

PROJECT_ROOM_PREFIX = "project:"


class EntityType(str, Enum):
    TASK = "task"
    PROJECT = "project"


class EventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class RoomEvent(BaseModel):
    """A change notification relayed to a project room.

    The wire name is "<entity>-<kind>", e.g. "task-updated". Deleted events
    carry only ``{"id": ...}`` as payload.
    """
    entity: EntityType
    kind: EventKind
    payload: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return f"{self.entity.value}-{self.kind.value}"

    @classmethod
    def from_name(cls, name: str, payload: Optional[Dict[str, Any]] = None) -> Optional["RoomEvent"]:
        entity, _, kind = (name or "").partition("-")
        try:
            return cls(entity=EntityType(entity), kind=EventKind(kind), payload=payload or {})
        except ValueError:
            return None

    @classmethod
    def created(cls, entity: EntityType, data: Dict[str, Any]) -> "RoomEvent":
        return cls(entity=entity, kind=EventKind.CREATED, payload=data)

    @classmethod
    def updated(cls, entity: EntityType, data: Dict[str, Any]) -> "RoomEvent":
        return cls(entity=entity, kind=EventKind.UPDATED, payload=data)

    @classmethod
    def deleted(cls, entity: EntityType, entity_id: str) -> "RoomEvent":
        return cls(entity=entity, kind=EventKind.DELETED, payload={"id": entity_id})

    def to_message(self, room_id: str) -> Dict[str, Any]:
        return {"event": self.name, "room": room_id, "payload": jsonable_encoder(self.payload)}


def project_room(project_id: str) -> str:
    return f"{PROJECT_ROOM_PREFIX}{project_id}"


def project_id_from_room(room_id: str) -> Optional[str]:
    if not room_id or not room_id.startswith(PROJECT_ROOM_PREFIX):
        return None
    return room_id[len(PROJECT_ROOM_PREFIX):] or None
