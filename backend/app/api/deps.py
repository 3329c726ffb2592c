from typing import Optional

from fastapi import Depends, Header, Request

from backend.app.schemas.events import RoomEvent, project_room
from backend.app.services.broadcaster import Connection, RoomBroadcaster
from backend.app.services.invitations import InvitationService


def get_store(request: Request):
    return request.app.state.store


def get_broadcaster(request: Request) -> RoomBroadcaster:
    return request.app.state.broadcaster


def get_notifier(request: Request):
    return request.app.state.notifier


def get_blob_store(request: Request):
    return request.app.state.blob_store


def get_invitation_service(store=Depends(get_store)) -> InvitationService:
    return InvitationService(store)


class ProjectPublisher:
    """
    Publishes REST-side mutations to the project's room. A client that is
    also connected over the socket sends its connection id in
    ``X-Connection-Id`` so it does not receive its own change back.
    """

    def __init__(self, broadcaster: RoomBroadcaster, origin: Optional[Connection]):
        self.broadcaster = broadcaster
        self.origin = origin

    def publish(self, project_id: Optional[str], event: RoomEvent) -> int:
        if not project_id:
            return 0
        return self.broadcaster.publish(self.origin, project_room(project_id), event)


def get_publisher(
    broadcaster: RoomBroadcaster = Depends(get_broadcaster),
    x_connection_id: Optional[str] = Header(None),
) -> ProjectPublisher:
    return ProjectPublisher(broadcaster, broadcaster.get_connection(x_connection_id))
