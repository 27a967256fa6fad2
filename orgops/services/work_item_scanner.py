"""
Daily work-item scan.

Stateless re-derivation of staff work items from live rows. Every candidate
goes through AutomationEngine.upsert_if_absent with a dedupe key built from
stable identity only, so running the scan any number of times creates each
item at most once and never touches an item a user has already acted on.

Sections:
- memberships ending within the renewal horizon -> renewal alert
- succeeded donations without a receipt -> receipt task
- published events starting in the reminder window -> reminder task
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orgops.core.config import settings
from orgops.core.structured_logging import build_log_context
from orgops.db.enums import (
    AuditAction,
    DonationStatus,
    MembershipStatus,
    ProgramEventStatus,
    WorkItemPriority,
    WorkItemStatus,
    WorkItemType,
)
from orgops.db.models import Donation, Membership, Organization, ProgramEvent
from orgops.services import audit_service, work_item_service
from orgops.services.automation_engine import AutomationEngine, get_automation_engine
from orgops.services.automation_errors import AutomationError
from orgops.services.automation_events import format_dollars

logger = logging.getLogger(__name__)

Candidate = tuple[str, dict[str, Any]]


@dataclass
class WorkItemScanResult:
    organization_id: UUID | None = None
    candidates: int = 0
    created: int = 0
    errors: list[str] = field(default_factory=list)  # bounded summaries
    errors_total: int = 0

    def add_error(self, message: str) -> None:
        self.errors_total += 1
        if len(self.errors) < settings.AUTOMATION_MAX_REPORTED_ERRORS:
            self.errors.append(message[:300])

    @classmethod
    def combine(cls, results: Iterable["WorkItemScanResult"]) -> "WorkItemScanResult":
        total = cls()
        for result in results:
            total.candidates += result.candidates
            total.created += result.created
            total.errors_total += result.errors_total
            room = settings.AUTOMATION_MAX_REPORTED_ERRORS - len(total.errors)
            if room > 0:
                total.errors.extend(result.errors[:room])
        return total


def _format_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else "unknown date"


# =============================================================================
# Candidate builders
# =============================================================================

def _membership_candidates(db: Session, org_id: UUID, now: datetime) -> list[Candidate]:
    horizon = now + timedelta(days=settings.WORK_ITEM_RENEWAL_HORIZON_DAYS)
    rows = (
        db.query(Membership)
        .filter(
            Membership.organization_id == org_id,
            Membership.status == MembershipStatus.ACTIVE.value,
            Membership.end_date.is_not(None),
            Membership.end_date >= now,
            Membership.end_date <= horizon,
        )
        .order_by(Membership.end_date, Membership.id)
        .limit(settings.WORK_ITEM_SCAN_MEMBERSHIP_LIMIT)
        .all()
    )

    candidates = []
    for membership in rows:
        name = membership.member_name or membership.member_email or "Member"
        candidates.append(
            (
                work_item_service.membership_renewal_key(membership.id),
                {
                    "item_type": WorkItemType.ALERT.value,
                    "module": "memberships",
                    "title": f"Renewal due: {name}",
                    "body": f"Membership expires on {_format_date(membership.end_date)}.",
                    "priority": WorkItemPriority.NORMAL.value,
                    "status": WorkItemStatus.OPEN.value,
                    "due_at": membership.end_date,
                    "reference_type": "membership",
                    "reference_id": str(membership.id),
                    "actions": {
                        "primary": {
                            "label": "Send reminder",
                            "href": f"/admin/members?action=send-renewal&id={membership.id}",
                        }
                    },
                },
            )
        )
    return candidates


def _donation_candidates(db: Session, org_id: UUID, now: datetime) -> list[Candidate]:
    rows = (
        db.query(Donation)
        .filter(
            Donation.organization_id == org_id,
            Donation.status == DonationStatus.SUCCEEDED.value,
            Donation.receipt_sent_at.is_(None),
        )
        .order_by(Donation.created_at, Donation.id)
        .limit(settings.WORK_ITEM_SCAN_DONATION_LIMIT)
        .all()
    )

    candidates = []
    for donation in rows:
        label = donation.donor_name or donation.donor_email or "Donor"
        candidates.append(
            (
                work_item_service.donation_receipt_key(donation.id),
                {
                    "item_type": WorkItemType.TASK.value,
                    "module": "donations",
                    "title": f"Send receipt: {label}",
                    "body": (
                        f"Donation of ${format_dollars(donation.amount_cents)} "
                        f"received {_format_date(donation.created_at)}."
                    ),
                    "priority": WorkItemPriority.NORMAL.value,
                    "status": WorkItemStatus.OPEN.value,
                    "due_at": donation.created_at,
                    "reference_type": "donation",
                    "reference_id": str(donation.id),
                    "actions": {
                        "primary": {
                            "label": "Send receipt",
                            "href": f"/admin/donations/{donation.id}?action=send-receipt",
                        }
                    },
                },
            )
        )
    return candidates


def _event_reminder_candidates(db: Session, org_id: UUID, now: datetime) -> list[Candidate]:
    window_start = now + timedelta(days=settings.WORK_ITEM_EVENT_REMINDER_DAYS)
    window_end = window_start + timedelta(days=1)
    rows = (
        db.query(ProgramEvent)
        .filter(
            ProgramEvent.organization_id == org_id,
            ProgramEvent.status == ProgramEventStatus.PUBLISHED.value,
            ProgramEvent.start_date >= window_start,
            ProgramEvent.start_date < window_end,
        )
        .order_by(ProgramEvent.start_date, ProgramEvent.id)
        .limit(settings.WORK_ITEM_SCAN_EVENT_LIMIT)
        .all()
    )

    candidates = []
    for program_event in rows:
        candidates.append(
            (
                work_item_service.event_reminder_key(program_event.id),
                {
                    "item_type": WorkItemType.TASK.value,
                    "module": "events",
                    "title": f"Send reminders: {program_event.title}",
                    "body": (
                        f"Event starts {_format_date(program_event.start_date)}. "
                        "Send attendee reminders."
                    ),
                    "priority": WorkItemPriority.NORMAL.value,
                    "status": WorkItemStatus.OPEN.value,
                    "due_at": now,
                    "reference_type": "event",
                    "reference_id": str(program_event.id),
                    "actions": {
                        "primary": {
                            "label": "Send reminders",
                            "href": f"/admin/events/{program_event.id}?action=send-reminders",
                        }
                    },
                },
            )
        )
    return candidates


SCAN_SECTIONS: tuple[tuple[str, Callable[[Session, UUID, datetime], list[Candidate]]], ...] = (
    ("memberships", _membership_candidates),
    ("donations", _donation_candidates),
    ("events", _event_reminder_candidates),
)


# =============================================================================
# Scan
# =============================================================================

def scan_work_items(
    db: Session,
    org_id: UUID,
    now: datetime | None = None,
    engine: AutomationEngine | None = None,
) -> WorkItemScanResult:
    """
    Run every section for one organization.

    A failing section or row is recorded in errors and the scan continues.
    """
    now = now or datetime.now(timezone.utc)
    engine = engine or get_automation_engine(db)
    result = WorkItemScanResult(organization_id=org_id)

    for section, build_candidates in SCAN_SECTIONS:
        try:
            # Materialize before upserting; each upsert commits
            candidates = build_candidates(db, org_id, now)
        except SQLAlchemyError as exc:
            db.rollback()
            result.add_error(f"{section}: query failed: {exc.__class__.__name__}")
            logger.exception(
                f"Work item scan section {section} failed",
                extra=build_log_context(org_id=org_id),
            )
            continue

        for dedupe_key, fields in candidates:
            result.candidates += 1
            try:
                if engine.upsert_if_absent(org_id, dedupe_key, fields):
                    result.created += 1
            except AutomationError as exc:
                result.add_error(f"{dedupe_key}: {exc}")

    logger.info(
        f"Work item scan: {result.created} created of {result.candidates} candidates, "
        f"{result.errors_total} errors",
        extra=build_log_context(org_id=org_id),
    )
    audit_service.record(
        db,
        audit_service.AuditEntry(
            organization_id=org_id,
            action=AuditAction.SCAN,
            entity_type="work_item_scan",
            actor=audit_service.SCHEDULER_ACTOR,
            metadata={
                "candidates": result.candidates,
                "created": result.created,
                "errors": result.errors_total,
            },
        ),
    )
    return result


def scan_all_organizations(
    db: Session,
    now: datetime | None = None,
) -> list[WorkItemScanResult]:
    """Scan every organization; one failing organization does not stop the rest."""
    now = now or datetime.now(timezone.utc)
    org_ids = [
        row.id
        for row in db.query(Organization.id).order_by(Organization.created_at, Organization.id)
    ]

    results = []
    for org_id in org_ids:
        try:
            results.append(scan_work_items(db, org_id, now=now))
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Work item scan failed for organization",
                extra=build_log_context(org_id=org_id),
            )
            failed = WorkItemScanResult(organization_id=org_id)
            failed.add_error(f"organization {org_id}: {exc.__class__.__name__}")
            results.append(failed)
    return results
