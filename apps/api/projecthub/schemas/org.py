"""Organization, membership, and project schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from projecthub.db.enums import Plan


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=100)
    plan: Plan = Plan.FREE
    description: str | None = None
    industry: str | None = None
    size: str | None = None


class OrganizationRead(BaseModel):
    id: UUID
    name: str
    slug: str
    description: str | None
    industry: str | None
    size: str | None
    plan: str
    status: str
    max_users: int
    max_projects: int
    max_storage_gb: int
    max_api_calls_per_month: int
    current_users: int
    current_projects: int
    features: dict[str, Any]
    owner_id: UUID | None
    trial_ends_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class MembershipRead(BaseModel):
    id: UUID
    organization_id: UUID
    user_id: UUID
    role: str
    status: str
    permissions: list[str]
    joined_at: datetime

    model_config = {"from_attributes": True}


class MemberRead(MembershipRead):
    email: str
    first_name: str | None = None
    last_name: str | None = None


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None


class ProjectRead(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    description: str | None
    status: str
    created_by: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}
