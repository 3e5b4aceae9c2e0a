"""Notification and Slack schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationSendRequest(BaseModel):
    user_id: UUID
    type: str = Field(min_length=1)
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    link: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    organization_id: UUID | None = None
    channels: list[str] | None = None


class NotificationRead(BaseModel):
    id: UUID
    type: str
    title: str
    message: str
    link: str | None
    metadata: dict[str, Any] = Field(validation_alias="extra")
    read: bool
    read_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SlackNotifyRequest(BaseModel):
    webhook_url: str = Field(min_length=1)
    message: str = Field(min_length=1)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
