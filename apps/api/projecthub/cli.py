"""CLI tools for ProjectHub administration."""

import json
import uuid
from datetime import datetime, timezone

import anyio
import click

from projecthub.core.errors import AppError
from projecthub.core.security import create_identity_token
from projecthub.core.structured_logging import configure_logging
from projecthub.db.enums import Plan
from projecthub.db.session import SessionLocal
from projecthub.jobs import registry
from projecthub.services import org_service
from projecthub.services.email_service import build_email_sender


@click.group()
def cli():
    """ProjectHub CLI tools."""
    configure_logging()


@cli.command("init-db")
def init_db():
    """Create any missing tables and indexes."""
    from projecthub.db import models  # noqa: F401  registers tables
    from projecthub.db.base import Base
    from projecthub.db.session import engine

    Base.metadata.create_all(engine)
    click.echo(f"✓ Schema ready ({len(Base.metadata.tables)} tables)")


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option("--owner-id", default=None, help="Identity-provider user id (sub) of the owner")
@click.option("--owner-email", required=True, help="Owner email address")
@click.option(
    "--plan",
    type=click.Choice([p.value for p in Plan], case_sensitive=False),
    default=Plan.FREE.value,
    show_default=True,
)
def create_org(name: str, slug: str, owner_id: str | None, owner_email: str, plan: str):
    """
    Create an organization with its OWNER membership.

    Example:
        projecthub create-org --name "Acme Corp" --slug acme --owner-email admin@acme.com
    """
    owner_uuid = uuid.UUID(owner_id) if owner_id else uuid.uuid4()
    db = SessionLocal()
    try:
        org, _ = org_service.create_org(
            db,
            owner_id=owner_uuid,
            owner_email=owner_email,
            name=name,
            slug=slug,
            plan=Plan(plan.upper()),
        )
        click.echo(f"✓ Created organization: {org.name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {org.slug}")
        click.echo(f"  Plan: {org.plan} (trial ends {org.trial_ends_at:%Y-%m-%d})")
        click.echo(f"✓ Owner: {owner_email} ({owner_uuid})")
    except AppError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()


@cli.command("list-jobs")
def list_jobs():
    """List scheduled jobs."""
    for name in sorted(registry.JOB_HANDLERS):
        click.echo(name)


@cli.command("run-job")
@click.argument("job_name")
@click.option("--now", "now_iso", default=None, help="Override the current time (ISO 8601)")
def run_job(job_name: str, now_iso: str | None):
    """Run one scheduled job and print its JSON summary."""
    try:
        now = datetime.fromisoformat(now_iso) if now_iso else None
    except ValueError:
        raise click.BadParameter(f"not an ISO 8601 timestamp: {now_iso}", param_hint="--now")
    if now is not None and now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    db = SessionLocal()
    try:
        summary = anyio.run(registry.run_job, job_name, db, build_email_sender(), now)
    except AppError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()
    click.echo(json.dumps(summary, indent=2, default=str))


@cli.command("issue-token")
@click.option("--user-id", required=True)
@click.option("--email", required=True)
@click.option("--hours", default=1, show_default=True)
def issue_token(user_id: str, email: str, hours: int):
    """Mint a local identity token (development only)."""
    click.echo(create_identity_token(uuid.UUID(user_id), email, hours))


if __name__ == "__main__":
    cli()
