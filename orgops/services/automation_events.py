"""
Automation event taxonomy, name validation and producer helpers.

Event names are dot-namespaced ``entity.action`` strings (e.g. donation.created).
Producers call the helpers below right after the business row they describe
is added to the session, so the event is logged in the same transaction.
"""

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID

from orgops.db.enums import AutomationEventName, AutomationSourceType
from orgops.services.automation_errors import AutomationValidationError

if TYPE_CHECKING:
    from orgops.services.automation_engine import AutomationEngine, EmitResult


EVENT_NAME_MAX_LENGTH = 100

# lowercase segments joined by dots, at least two segments
EVENT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z0-9_]+)+$")

EVENT_TAXONOMY: frozenset[str] = frozenset(name.value for name in AutomationEventName)

# Older producers still send underscore-style names
LEGACY_EVENT_ALIASES: dict[str, str] = {
    "donation_created": AutomationEventName.DONATION_CREATED.value,
    "donation_refunded": AutomationEventName.DONATION_REFUNDED.value,
    "member_created": AutomationEventName.MEMBER_CREATED.value,
    "membership_created": AutomationEventName.MEMBERSHIP_CREATED.value,
    "membership_renewed": AutomationEventName.MEMBERSHIP_RENEWED.value,
    "membership_expired": AutomationEventName.MEMBERSHIP_EXPIRED.value,
    "membership_expiring": AutomationEventName.MEMBERSHIP_EXPIRING_SOON.value,
    "payment_failed": AutomationEventName.PAYMENT_FAILED.value,
    "payment_succeeded": AutomationEventName.PAYMENT_SUCCEEDED.value,
    "grant_submitted": AutomationEventName.GRANT_APPLICATION_SUBMITTED.value,
    "grant_awarded": AutomationEventName.GRANT_AWARDED.value,
    "event_registration": AutomationEventName.EVENT_REGISTRATION_CREATED.value,
    "invoice_overdue": AutomationEventName.INVOICE_OVERDUE.value,
}


def normalize_event_name(event_name: Any) -> str:
    """
    Resolve legacy aliases and validate the dotted format.

    Only the format is checked; names outside EVENT_TAXONOMY are legal.
    """
    if isinstance(event_name, Enum):
        event_name = event_name.value
    if not isinstance(event_name, str) or not event_name.strip():
        raise AutomationValidationError("Event name must be a non-empty string")

    name = event_name.strip()
    name = LEGACY_EVENT_ALIASES.get(name, name)

    if len(name) > EVENT_NAME_MAX_LENGTH:
        raise AutomationValidationError(
            f"Event name exceeds {EVENT_NAME_MAX_LENGTH} characters"
        )
    if not EVENT_NAME_PATTERN.match(name):
        raise AutomationValidationError(
            f"Event name '{name}' must be dot-namespaced, e.g. 'donation.created'"
        )
    return name


def is_known_event(event_name: str) -> bool:
    return event_name in EVENT_TAXONOMY


def normalize_source_type(source_type: Any) -> AutomationSourceType:
    try:
        return AutomationSourceType(source_type)
    except ValueError:
        allowed = ", ".join(s.value for s in AutomationSourceType)
        raise AutomationValidationError(
            f"Invalid source type '{source_type}' (expected one of: {allowed})"
        ) from None


def normalize_payload(payload: Any) -> dict[str, Any]:
    """
    Return a detached, JSON-clean copy of the payload.

    UUIDs, datetimes and decimals become strings.
    """
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise AutomationValidationError("Event payload must be an object")
    try:
        return json.loads(json.dumps(dict(payload), default=str, allow_nan=False))
    except (TypeError, ValueError) as exc:
        raise AutomationValidationError(f"Event payload is not JSON-serializable: {exc}") from exc


def format_dollars(amount_cents: int | None) -> str | None:
    if amount_cents is None:
        return None
    return f"{amount_cents / 100:.2f}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


# =============================================================================
# Producer helpers
# =============================================================================

def emit_donation_created(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    donation_id: UUID | str,
    donor_email: str,
    amount_cents: int,
    donor_name: str | None = None,
    is_first_donation: bool | None = None,
    is_recurring: bool | None = None,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    """Emit donation.created with derived amount_dollars and donation_date."""
    payload = _compact(
        {
            "donation_id": str(donation_id),
            "donor_email": donor_email,
            "donor_name": donor_name,
            "amount_cents": amount_cents,
            "is_first_donation": is_first_donation,
            "is_recurring": is_recurring,
        }
    )
    payload["amount_dollars"] = format_dollars(amount_cents)
    payload["donation_date"] = _now_iso()
    return engine.emit(
        org_id, AutomationEventName.DONATION_CREATED, payload, source_type, source_id
    )


def emit_member_created(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    member_email: str,
    member_org_id: UUID | str | None = None,
    member_name: str | None = None,
    organization_name: str | None = None,
    membership_type: str | None = None,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    payload = _compact(
        {
            "member_org_id": str(member_org_id) if member_org_id else None,
            "member_email": member_email,
            "member_name": member_name,
            "organization_name": organization_name,
            "membership_type": membership_type,
        }
    )
    payload["created_at"] = _now_iso()
    return engine.emit(
        org_id, AutomationEventName.MEMBER_CREATED, payload, source_type, source_id
    )


def emit_membership_renewed(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    member_org_id: UUID | str,
    member_email: str,
    member_name: str,
    expires_at: datetime | str,
    amount_cents: int | None = None,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    payload = _compact(
        {
            "member_org_id": str(member_org_id),
            "member_email": member_email,
            "member_name": member_name,
            "expires_at": expires_at.isoformat() if isinstance(expires_at, datetime) else expires_at,
            "amount_cents": amount_cents,
        }
    )
    return engine.emit(
        org_id, AutomationEventName.MEMBERSHIP_RENEWED, payload, source_type, source_id
    )


def emit_grant_application_submitted(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    application_id: UUID | str,
    applicant_email: str,
    applicant_name: str,
    project_title: str,
    organization_name: str,
    requested_amount_cents: int,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    payload = {
        "application_id": str(application_id),
        "applicant_email": applicant_email,
        "applicant_name": applicant_name,
        "project_title": project_title,
        "organization_name": organization_name,
        "requested_amount_cents": requested_amount_cents,
        "requested_amount_dollars": format_dollars(requested_amount_cents),
        "submitted_at": _now_iso(),
    }
    return engine.emit(
        org_id,
        AutomationEventName.GRANT_APPLICATION_SUBMITTED,
        payload,
        source_type,
        source_id,
    )


def emit_grant_awarded(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    application_id: UUID | str,
    applicant_email: str,
    applicant_name: str,
    project_title: str,
    award_amount_cents: int,
    grant_start: str,
    grant_end: str,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    payload = {
        "application_id": str(application_id),
        "applicant_email": applicant_email,
        "applicant_name": applicant_name,
        "project_title": project_title,
        "award_amount_cents": award_amount_cents,
        "award_amount_dollars": format_dollars(award_amount_cents),
        "grant_start": grant_start,
        "grant_end": grant_end,
    }
    return engine.emit(
        org_id, AutomationEventName.GRANT_AWARDED, payload, source_type, source_id
    )


def emit_payment_failed(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    member_org_id: UUID | str,
    member_email: str,
    member_name: str,
    amount_cents: int,
    billing_url: str,
    source_type: AutomationSourceType = AutomationSourceType.WEBHOOK,
    source_id: str | None = None,
) -> "EmitResult":
    payload = {
        "member_org_id": str(member_org_id),
        "member_email": member_email,
        "member_name": member_name,
        "amount_cents": amount_cents,
        "billing_url": billing_url,
    }
    return engine.emit(
        org_id, AutomationEventName.PAYMENT_FAILED, payload, source_type, source_id
    )


def emit_event_registration(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    registration_id: UUID | str,
    event_id: UUID | str,
    event_title: str,
    event_date: str,
    registrant_email: str,
    registrant_name: str,
    event_time: str | None = None,
    event_location: str | None = None,
    is_virtual: bool | None = None,
    virtual_link: str | None = None,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    payload = _compact(
        {
            "registration_id": str(registration_id),
            "event_id": str(event_id),
            "event_title": event_title,
            "event_date": event_date,
            "event_time": event_time,
            "event_location": event_location,
            "registrant_email": registrant_email,
            "registrant_name": registrant_name,
            "is_virtual": is_virtual,
            "virtual_link": virtual_link,
        }
    )
    return engine.emit(
        org_id,
        AutomationEventName.EVENT_REGISTRATION_CREATED,
        payload,
        source_type,
        source_id,
    )


def emit_invoice_overdue(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    invoice_id: UUID | str,
    invoice_number: str,
    bill_to_email: str,
    amount_cents: int,
    pay_url: str,
    due_date: str,
    source_type: AutomationSourceType = AutomationSourceType.CRON,
    source_id: str | None = None,
) -> "EmitResult":
    payload = {
        "invoice_id": str(invoice_id),
        "invoice_number": invoice_number,
        "bill_to_email": bill_to_email,
        "amount_cents": amount_cents,
        "amount_formatted": f"${format_dollars(amount_cents)}",
        "pay_url": pay_url,
        "due_date": due_date,
    }
    return engine.emit(
        org_id, AutomationEventName.INVOICE_OVERDUE, payload, source_type, source_id
    )


def emit_approval_created(
    engine: "AutomationEngine",
    org_id: UUID,
    *,
    approval_id: UUID | str,
    approval_type: str,
    title: str,
    created_by_email: str,
    amount_cents: int | None = None,
    source_type: AutomationSourceType = AutomationSourceType.API,
    source_id: str | None = None,
) -> "EmitResult":
    payload = _compact(
        {
            "approval_id": str(approval_id),
            "approval_type": approval_type,
            "title": title,
            "amount_cents": amount_cents,
            "created_by_email": created_by_email,
        }
    )
    return engine.emit(
        org_id, AutomationEventName.APPROVAL_CREATED, payload, source_type, source_id
    )
