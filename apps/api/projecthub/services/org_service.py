"""Organization service - tenant creation, plan limits, and projects."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from projecthub.core.config import settings
from projecthub.core.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, ValidationError,
)
from projecthub.db.enums import OrganizationStatus, Plan, Role
from projecthub.db.models import Organization, OrganizationMember, Project, User

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
OWNER_PERMISSIONS = ["*"]


@dataclass(frozen=True)
class PlanLimits:
    max_users: int
    max_projects: int
    max_storage_gb: int
    max_api_calls_per_month: int


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(5, 3, 1, 10_000),
    Plan.STARTER: PlanLimits(20, 999, 10, 100_000),
    Plan.PROFESSIONAL: PlanLimits(100, 999, 100, 1_000_000),
    Plan.ENTERPRISE: PlanLimits(999, 999, 1000, 10_000_000),
}


def plan_features(plan: Plan) -> dict[str, bool]:
    """Feature flags unlocked by a plan."""
    paid = plan != Plan.FREE
    advanced = plan in (Plan.PROFESSIONAL, Plan.ENTERPRISE)
    return {
        "task_automation": paid,
        "analytics": paid,
        "custom_fields": advanced,
        "api_access": advanced,
    }


def get_org_by_id(db: Session, org_id: UUID) -> Organization | None:
    """Get organization by ID."""
    return db.query(Organization).filter(Organization.id == org_id).first()


def get_org_or_404(db: Session, org_id: UUID) -> Organization:
    org = get_org_by_id(db, org_id)
    if not org:
        raise NotFoundError("Organization not found")
    return org


def get_org_by_slug(db: Session, slug: str) -> Organization | None:
    """Get organization by slug."""
    return db.query(Organization).filter(Organization.slug == slug.lower()).first()


def ensure_user(
    db: Session,
    user_id: UUID,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Return the profile for ``user_id``, creating it from identity claims if absent."""
    user = db.query(User).filter(User.id == user_id).first()
    if user:
        return user
    user = User(
        id=user_id,
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
    )
    db.add(user)
    db.flush()
    return user


def create_org(
    db: Session,
    *,
    owner_id: UUID,
    owner_email: str,
    name: str,
    slug: str,
    plan: Plan = Plan.FREE,
    description: str | None = None,
    industry: str | None = None,
    size: str | None = None,
) -> tuple[Organization, OrganizationMember]:
    """
    Create an organization on a trial and make the caller its OWNER.

    Organization, owner profile (if missing) and owner membership are
    written in one transaction.

    Raises:
        ValidationError: Missing name/slug or malformed slug
        ConflictError: Slug already taken
    """
    name = (name or "").strip()
    slug = (slug or "").strip().lower()
    if not name or not slug:
        raise ValidationError("Organization name and slug are required")
    if not SLUG_PATTERN.match(slug):
        raise ValidationError(
            "Slug may only contain lowercase letters, numbers, hyphens, and underscores"
        )
    if get_org_by_slug(db, slug):
        raise ConflictError("Organization slug already exists")

    plan = Plan(plan)
    limits = PLAN_LIMITS[plan]
    now = datetime.now(timezone.utc)

    try:
        ensure_user(db, owner_id, owner_email)
        org = Organization(
            name=name,
            slug=slug,
            description=description,
            industry=industry,
            size=size,
            plan=plan.value,
            status=OrganizationStatus.TRIAL.value,
            max_users=limits.max_users,
            max_projects=limits.max_projects,
            max_storage_gb=limits.max_storage_gb,
            max_api_calls_per_month=limits.max_api_calls_per_month,
            current_users=1,
            current_projects=0,
            storage_used_bytes=0,
            api_calls_this_month=0,
            features=plan_features(plan),
            owner_id=owner_id,
            trial_ends_at=now + timedelta(days=settings.TRIAL_DAYS),
        )
        db.add(org)
        db.flush()

        membership = OrganizationMember(
            organization_id=org.id,
            user_id=owner_id,
            role=Role.OWNER.value,
            permissions=list(OWNER_PERMISSIONS),
            joined_at=now,
        )
        db.add(membership)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Organization slug already exists") from exc

    db.refresh(org)
    db.refresh(membership)
    logger.info("Organization created org=%s plan=%s", org.id, org.plan)
    return org, membership


def list_members(db: Session, org_id: UUID) -> list[tuple[OrganizationMember, User]]:
    return (
        db.query(OrganizationMember, User)
        .join(User, User.id == OrganizationMember.user_id)
        .filter(OrganizationMember.organization_id == org_id)
        .order_by(OrganizationMember.joined_at)
        .all()
    )


# =============================================================================
# Projects
# =============================================================================

def create_project(
    db: Session,
    org_id: UUID,
    created_by: UUID,
    name: str,
    description: str | None = None,
) -> Project:
    """
    Create a project, enforcing the plan's project limit.

    Raises:
        ValidationError: Missing name
        NotFoundError: Organization missing
        PermissionDeniedError: Project limit reached
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Project name is required")

    org = get_org_or_404(db, org_id)
    claimed = db.query(Organization).filter(
        Organization.id == org.id,
        Organization.current_projects < Organization.max_projects,
    ).update(
        {Organization.current_projects: Organization.current_projects + 1},
        synchronize_session=False,
    )
    if not claimed:
        db.rollback()
        raise PermissionDeniedError("Project limit reached")

    project = Project(
        organization_id=org.id,
        name=name,
        description=description,
        created_by=created_by,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def get_project_or_404(db: Session, org_id: UUID, project_id: UUID) -> Project:
    project = db.query(Project).filter(
        Project.id == project_id,
        Project.organization_id == org_id,
    ).first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def list_projects(db: Session, org_id: UUID) -> list[Project]:
    return (
        db.query(Project)
        .filter(Project.organization_id == org_id)
        .order_by(Project.created_at.desc())
        .all()
    )
