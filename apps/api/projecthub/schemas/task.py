"""Task schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from projecthub.db.enums import RecurrenceFrequency, TaskPriority, TaskStatus


class RecurrenceIn(BaseModel):
    frequency: RecurrenceFrequency
    interval: int = Field(default=1, ge=1)
    next_occurrence: datetime | None = None


class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to_id: UUID | None = None
    tags: list[str] = Field(default_factory=list)
    start_date: datetime | None = None
    due_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    recurrence: RecurrenceIn | None = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskRead(BaseModel):
    id: UUID
    organization_id: UUID
    project_id: UUID
    title: str
    description: str | None
    status: str
    priority: str
    assigned_to_id: UUID | None
    created_by_id: UUID | None
    tags: list[str]
    start_date: datetime | None
    due_date: datetime | None
    estimated_hours: float | None
    completed_at: datetime | None
    recurrence: dict[str, Any] | None
    parent_task_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TaskImportRequest(BaseModel):
    tasks: list[dict[str, Any]]


class TaskImportS3Request(BaseModel):
    file_key: str = Field(min_length=1)
