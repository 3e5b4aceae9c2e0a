"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from projecthub.db.enums import Role


class Identity(BaseModel):
    """Verified caller identity asserted by the identity provider."""
    user_id: UUID
    email: str


class MemberContext(BaseModel):
    """
    Caller identity plus their membership in the organization in the path.

    Returned by the ``get_org_member`` dependency.
    """
    user_id: UUID
    email: str
    org_id: UUID
    role: Role
