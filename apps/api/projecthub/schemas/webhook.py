"""Webhook schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class WebhookCreate(BaseModel):
    url: str
    events: list[str]
    secret: str | None = Field(default=None, min_length=16, max_length=255)


class WebhookRead(BaseModel):
    id: UUID
    organization_id: UUID
    url: str
    events: list[str]
    active: bool
    failure_count: int
    last_triggered: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookCreated(WebhookRead):
    """Returned once at creation; the secret is not shown again."""
    secret: str


class WebhookDispatchRequest(BaseModel):
    organization_id: UUID
    event: str = Field(min_length=1)
    data: Any = None
