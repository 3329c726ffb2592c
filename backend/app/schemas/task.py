from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

DEFAULT_TASK_STATUS = "Assigned"
DONE_STATUS = "Done"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class TaskFile(BaseModel):
    id: str
    name: str
    original_name: str
    path: str
    size: int
    mimetype: str
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    project_id: Optional[str] = None
    category_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: Optional[str] = None
    assignee_id: Optional[str] = None
    deadline: Optional[datetime] = None
    tags: List[str] = []


class TaskUpdate(BaseModel):
    # Fields left unset are untouched; explicit nulls clear optional references
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    status: Optional[str] = None
    assignee_id: Optional[str] = None
    deadline: Optional[datetime] = None
    tags: Optional[List[str]] = None


class TaskResponse(BaseModel):
    id: str
    title: str
    description: str = ""
    project_id: Optional[str] = None
    category_id: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: str = DEFAULT_TASK_STATUS
    assignee_id: Optional[str] = None
    deadline: Optional[datetime] = None
    tags: List[str] = []
    files: List[TaskFile] = []
    created_by: str
    is_personal: bool = False
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    order: int = 0
    is_overdue: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TaskOrderItem(BaseModel):
    id: str
    status: str
    order: int


class TaskReorder(BaseModel):
    tasks: List[TaskOrderItem]
