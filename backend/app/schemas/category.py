from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from backend.app.schemas.project import HEX_COLOR_PATTERN


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(..., pattern=HEX_COLOR_PATTERN)
    description: str = Field("", max_length=200)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    description: Optional[str] = Field(None, max_length=200)


class CategoryResponse(BaseModel):
    id: str
    name: str
    color: str
    description: str = ""
    created_by: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    usage_in_tasks: int = 0
    usage_in_projects: int = 0

    class Config:
        from_attributes = True


class CategoryStats(BaseModel):
    total_categories: int
    total_usage_in_tasks: int
