"""Tests for organization creation, plan limits, and projects."""

import pytest
from httpx import AsyncClient
from sqlalchemy.orm import Session

from projecthub.db.enums import Plan, Role
from projecthub.db.models import Organization, OrganizationMember, User
from projecthub.services import org_service


@pytest.mark.asyncio
async def test_create_organization_makes_caller_owner(client: AsyncClient, db: Session, owner):
    response = await client.post(
        "/organizations",
        json={"name": "Globex", "slug": "globex"},
        headers=owner.headers,
    )

    assert response.status_code == 201
    body = response.json()
    org = body["organization"]
    assert org["slug"] == "globex"
    assert org["plan"] == Plan.FREE.value
    assert org["status"] == "TRIAL"
    assert org["max_users"] == 5
    assert org["max_projects"] == 3
    assert org["current_users"] == 1
    assert org["owner_id"] == str(owner.user_id)
    assert body["membership"]["role"] == Role.OWNER.value
    assert body["membership"]["permissions"] == ["*"]

    # The owner's profile is created from the token claims.
    user = db.query(User).filter(User.id == owner.user_id).one()
    assert user.email == owner.email


@pytest.mark.asyncio
async def test_create_organization_duplicate_slug_conflicts(client: AsyncClient, owner, test_org):
    response = await client.post(
        "/organizations",
        json={"name": "Other", "slug": test_org.slug},
        headers=owner.headers,
    )

    assert response.status_code == 409
    assert response.json() == {"error": "Organization slug already exists"}


@pytest.mark.asyncio
async def test_create_organization_rejects_malformed_slug(client: AsyncClient, owner):
    response = await client.post(
        "/organizations",
        json={"name": "Acme", "slug": "acme corp"},
        headers=owner.headers,
    )

    assert response.status_code == 400
    assert "Slug may only contain" in response.json()["error"]


@pytest.mark.asyncio
async def test_create_organization_requires_token(client: AsyncClient):
    response = await client.post("/organizations", json={"name": "Acme", "slug": "acme"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


@pytest.mark.asyncio
async def test_invalid_token_is_rejected(client: AsyncClient):
    response = await client.post(
        "/organizations",
        json={"name": "Acme", "slug": "acme"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid token"}


@pytest.mark.asyncio
async def test_request_body_validation_uses_error_envelope(client: AsyncClient, owner):
    response = await client.post("/organizations", json={"slug": "acme"}, headers=owner.headers)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request"
    assert body["details"][0]["field"] == "name"


@pytest.mark.asyncio
async def test_get_organization_requires_membership(client: AsyncClient, test_org, make_actor):
    outsider = make_actor("outsider")

    response = await client.get(f"/organizations/{test_org.id}", headers=outsider.headers)

    assert response.status_code == 403
    assert response.json() == {"error": "Not a member of this organization"}


@pytest.mark.asyncio
async def test_list_members_includes_profiles(client: AsyncClient, owner, test_org, add_member):
    member = add_member(test_org, Role.MEMBER, first_name="Dana")

    response = await client.get(f"/organizations/{test_org.id}/members", headers=owner.headers)

    assert response.status_code == 200
    members = {m["email"]: m for m in response.json()["members"]}
    assert members[owner.email]["role"] == "OWNER"
    assert members[member.email]["role"] == "MEMBER"
    assert members[member.email]["first_name"] == "Dana"


def test_create_org_seeds_plan_limits_and_features(db: Session, make_actor):
    actor = make_actor("owner")

    org, membership = org_service.create_org(
        db,
        owner_id=actor.user_id,
        owner_email=actor.email,
        name="Initech",
        slug="initech",
        plan=Plan.PROFESSIONAL,
    )

    assert org.max_users == 100
    assert org.features["api_access"] is True
    assert org.trial_ends_at is not None
    assert membership.role == Role.OWNER.value
    assert db.query(OrganizationMember).filter_by(organization_id=org.id).count() == 1


# =============================================================================
# Projects
# =============================================================================

@pytest.mark.asyncio
async def test_project_limit_is_enforced(client: AsyncClient, db: Session, owner, test_org):
    for i in range(3):
        response = await client.post(
            f"/organizations/{test_org.id}/projects",
            json={"name": f"Project {i}"},
            headers=owner.headers,
        )
        assert response.status_code == 201

    response = await client.post(
        f"/organizations/{test_org.id}/projects",
        json={"name": "One too many"},
        headers=owner.headers,
    )

    assert response.status_code == 403
    assert response.json() == {"error": "Project limit reached"}
    org = db.query(Organization).filter(Organization.id == test_org.id).one()
    assert org.current_projects == 3


@pytest.mark.asyncio
async def test_viewer_cannot_create_project(client: AsyncClient, test_org, add_member):
    viewer = add_member(test_org, Role.VIEWER)

    response = await client.post(
        f"/organizations/{test_org.id}/projects",
        json={"name": "Nope"},
        headers=viewer.headers,
    )

    assert response.status_code == 403
    assert "not authorized" in response.json()["error"]


@pytest.mark.asyncio
async def test_list_projects_visible_to_members(client: AsyncClient, db: Session, owner, test_org, add_member):
    org_service.create_project(db, test_org.id, owner.user_id, "Roadmap")
    viewer = add_member(test_org, Role.VIEWER)

    response = await client.get(f"/organizations/{test_org.id}/projects", headers=viewer.headers)

    assert response.status_code == 200
    assert [p["name"] for p in response.json()["projects"]] == ["Roadmap"]


@pytest.mark.asyncio
async def test_health_reports_database(client: AsyncClient, db: Session):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] == "ok"
