from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum

from backend.app.schemas.project import ProjectRole


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class InvitationCreate(BaseModel):
    project_id: str
    email: str
    role: ProjectRole = ProjectRole.MEMBER


class InvitationAccept(BaseModel):
    token: str


class InvitationResponse(BaseModel):
    id: str
    project_id: str
    project_name: str = ""
    email: str
    role: ProjectRole
    status: InvitationStatus
    invited_by: str
    expires_at: datetime
    created_at: datetime
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[str] = None

    class Config:
        from_attributes = True


class InvitationCreated(InvitationResponse):
    token: str


class InvitationProject(BaseModel):
    id: str
    name: str
    color: Optional[str] = None
    description: Optional[str] = None


class InvitationPreview(BaseModel):
    project: InvitationProject
    role: ProjectRole
    status: InvitationStatus
    invited_by: str
    invited_by_email: Optional[str] = None
    expires_at: datetime
    created_at: datetime
