"""Invite-related Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, field_validator

from projecthub.db.enums import Role


class InviteCreate(BaseModel):
    """
    Request schema for creating an invite.

    Email is normalized to lowercase; the role defaults to MEMBER.
    """
    email: EmailStr
    role: Role = Role.MEMBER

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower()


class InviteAccept(BaseModel):
    token: str | None = None


class InviteRead(BaseModel):
    """Response schema for reading an invite (never exposes the token)."""
    id: UUID
    organization_id: UUID
    email: str
    role: Role
    status: str
    invited_by: UUID | None
    expires_at: datetime
    accepted_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
