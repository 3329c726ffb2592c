from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
DEFAULT_PROJECT_COLOR = "#8B5CF6"


class ProjectRole(str, Enum):
    OWNER = "Owner"
    COLLABORATOR = "Collaborator"
    MEMBER = "Member"
    VIEWER = "Viewer"


class ProjectMember(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: ProjectRole
    added_at: Optional[datetime] = None


class ProjectLink(BaseModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class ProjectColumn(BaseModel):
    name: str = Field(..., min_length=1)
    order: int


class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    color: str = Field(DEFAULT_PROJECT_COLOR, pattern=HEX_COLOR_PATTERN)
    links: List[ProjectLink] = []
    tags: List[str] = []
    category_ids: List[str] = []


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    links: Optional[List[ProjectLink]] = None
    tags: Optional[List[str]] = None
    category_ids: Optional[List[str]] = None


class ProjectStats(BaseModel):
    total: int = 0
    overdue: int = 0
    by_status: Dict[str, int] = {}


class ProjectResponse(ProjectBase):
    id: str
    owner_id: str
    members: List[ProjectMember] = []
    columns: List[ProjectColumn] = []
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    user_role: Optional[ProjectRole] = None
    tasks_count: Optional[int] = None
    overdue_count: Optional[int] = None
    stats: Optional[ProjectStats] = None

    class Config:
        from_attributes = True


class ColumnsUpdate(BaseModel):
    columns: List[ProjectColumn]


class UpdateMemberRoleRequest(BaseModel):
    role: ProjectRole
