"""Organization, member, and project endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from projecthub.core.deps import get_current_identity, get_db, get_org_member, require_roles
from projecthub.db.enums import ROLES_CAN_MANAGE_PROJECTS
from projecthub.schemas.auth import Identity, MemberContext
from projecthub.schemas.org import (
    MemberRead, MembershipRead, OrganizationCreate, OrganizationRead, ProjectCreate, ProjectRead,
)
from projecthub.services import membership_service, org_service

router = APIRouter(prefix="/organizations", tags=["organizations"])


# =============================================================================
# Organizations
# =============================================================================

@router.post("", status_code=201)
def create_organization(
    data: OrganizationCreate,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Create an organization on a trial plan; the caller becomes its OWNER."""
    org, membership = org_service.create_org(
        db,
        owner_id=identity.user_id,
        owner_email=identity.email,
        name=data.name,
        slug=data.slug,
        plan=data.plan,
        description=data.description,
        industry=data.industry,
        size=data.size,
    )
    return {
        "success": True,
        "organization": OrganizationRead.model_validate(org).model_dump(mode="json"),
        "membership": MembershipRead.model_validate(membership).model_dump(mode="json"),
    }


@router.get("/{org_id}")
def get_organization(
    org_id: UUID,
    member: MemberContext = Depends(get_org_member),
    db: Session = Depends(get_db),
):
    org = org_service.get_org_or_404(db, org_id)
    return {
        "success": True,
        "organization": OrganizationRead.model_validate(org).model_dump(mode="json"),
    }


# =============================================================================
# Members
# =============================================================================

@router.get("/{org_id}/members")
def list_members(
    org_id: UUID,
    member: MemberContext = Depends(get_org_member),
    db: Session = Depends(get_db),
):
    items = []
    for membership, user in org_service.list_members(db, org_id):
        read = MemberRead(
            **MembershipRead.model_validate(membership).model_dump(),
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
        )
        items.append(read.model_dump(mode="json"))
    return {"success": True, "members": items}


@router.delete("/{org_id}/members/{user_id}")
def remove_member(
    org_id: UUID,
    user_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Remove a member. Role and last-owner checks live in the service."""
    membership_service.remove_member(db, org_id, identity.user_id, user_id)
    return {"success": True, "message": "User removed from organization"}


# =============================================================================
# Projects
# =============================================================================

@router.post("/{org_id}/projects", status_code=201)
def create_project(
    org_id: UUID,
    data: ProjectCreate,
    member: MemberContext = Depends(require_roles(ROLES_CAN_MANAGE_PROJECTS)),
    db: Session = Depends(get_db),
):
    project = org_service.create_project(
        db, org_id, member.user_id, data.name, data.description
    )
    return {
        "success": True,
        "project": ProjectRead.model_validate(project).model_dump(mode="json"),
    }


@router.get("/{org_id}/projects")
def list_projects(
    org_id: UUID,
    member: MemberContext = Depends(get_org_member),
    db: Session = Depends(get_db),
):
    projects = org_service.list_projects(db, org_id)
    return {
        "success": True,
        "projects": [ProjectRead.model_validate(p).model_dump(mode="json") for p in projects],
    }
