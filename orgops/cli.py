"""CLI tools for automation operations."""

import json
from uuid import UUID

import click

from orgops.core.structured_logging import configure_logging
from orgops.db.enums import AutomationSourceType
from orgops.db.models import Organization
from orgops.db.session import SessionLocal
from orgops.services import work_item_scanner
from orgops.services.automation_engine import get_automation_engine
from orgops.services.automation_errors import AutomationError


@click.group()
def cli():
    """OrgOps automation CLI tools."""
    configure_logging()


@cli.command()
@click.option("--name", required=True, help="Organization name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
def create_org(name: str, slug: str):
    """
    Create an organization (tenant).

    Example:
        orgops create-org --name "Friends of the Park" --slug "fotp"
    """
    slug = slug.lower().strip()
    if not slug.replace("-", "").replace("_", "").isalnum():
        click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
        return

    db = SessionLocal()
    try:
        existing = db.query(Organization).filter(Organization.slug == slug).first()
        if existing:
            click.echo(f"❌ Organization with slug '{slug}' already exists")
            return

        org = Organization(name=name, slug=slug)
        db.add(org)
        db.commit()

        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {slug}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--org-id", required=True, type=click.UUID, help="Organization ID")
@click.option("--name", "event_name", required=True, help="Event name, e.g. donation.created")
@click.option("--payload", default="{}", help="Event payload as a JSON object")
@click.option(
    "--source-type",
    type=click.Choice([s.value for s in AutomationSourceType]),
    default=AutomationSourceType.MANUAL.value,
    show_default=True,
    help="Event origin",
)
@click.option("--source-id", default=None, help="Optional producer reference")
def emit_event(org_id: UUID, event_name: str, payload: str, source_type: str, source_id: str | None):
    """
    Emit an automation event and report matched/queued rule counts.

    Example:
        orgops emit-event --org-id <uuid> --name donation.created --payload '{"amount_cents": 150000}'
    """
    try:
        body = json.loads(payload)
    except json.JSONDecodeError as e:
        click.echo(f"❌ Invalid payload JSON: {e}")
        return

    db = SessionLocal()
    try:
        result = get_automation_engine(db).emit(
            org_id, event_name, body, source_type, source_id
        )
        click.echo(f"✓ Logged event {result.event_name} ({result.event_id})")
        click.echo(f"  Rules matched: {result.rules_matched}")
        click.echo(f"  Rules queued: {result.rules_queued}")
        if result.errors_total:
            click.echo(f"  Errors: {result.errors_total}")
            for error in result.errors:
                click.echo(f"    - {error}")

    except AutomationError as e:
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
@click.option("--org-id", default=None, type=click.UUID, help="Scan a single organization")
def scan_work_items(org_id: UUID | None):
    """
    Run the daily work-item scan. Safe to re-run.

    Example:
        orgops scan-work-items --org-id <uuid>
    """
    db = SessionLocal()
    try:
        if org_id:
            results = [work_item_scanner.scan_work_items(db, org_id)]
        else:
            results = work_item_scanner.scan_all_organizations(db)

        total = work_item_scanner.WorkItemScanResult.combine(results)
        click.echo(f"✓ Scanned {len(results)} organization(s)")
        click.echo(f"  Candidates: {total.candidates}")
        click.echo(f"  Created: {total.created}")
        if total.errors_total:
            click.echo(f"  Errors: {total.errors_total}")
            for error in total.errors:
                click.echo(f"    - {error}")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
