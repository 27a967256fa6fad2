"""
Work item service.

Work items are staff-facing alerts/tasks keyed by a deterministic dedupe key.
Scanners create them through AutomationEngine.upsert_if_absent (insert or
ignore on (organization_id, dedupe_key)); after creation their status belongs
to the user actions below.
"""

from datetime import datetime, timezone
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from orgops.db.enums import AuditAction, WorkItemPriority, WorkItemStatus, WorkItemType
from orgops.db.models import WorkItem
from orgops.services import audit_service
from orgops.services.automation_errors import AutomationValidationError

DEDUPE_KEY_MAX_LENGTH = 255
TITLE_MAX_LENGTH = 255

# Business columns a scanner may set on first insert
WORK_ITEM_FIELDS = frozenset(
    {
        "item_type",
        "module",
        "title",
        "body",
        "priority",
        "status",
        "due_at",
        "reference_type",
        "reference_id",
        "actions",
    }
)

# Identity and user-owned lifecycle columns
RESERVED_WORK_ITEM_FIELDS = frozenset(
    {
        "id",
        "organization_id",
        "dedupe_key",
        "snoozed_until",
        "completed_at",
        "created_at",
        "updated_at",
    }
)

_ENUM_FIELDS = {
    "item_type": WorkItemType,
    "priority": WorkItemPriority,
    "status": WorkItemStatus,
}


# =============================================================================
# Dedupe keys
# =============================================================================

def build_dedupe_key(entity_type: str, kind: str, entity_id: UUID | str) -> str:
    """
    Build "<entity_type>:<kind>:<entity_id>".

    Must depend only on stable identity and alert kind (no timestamps), so a
    re-scan of unchanged data recomputes the same key.
    """
    for label, part in (("entity_type", entity_type), ("kind", kind)):
        if not isinstance(part, str) or not part.strip():
            raise AutomationValidationError(f"Dedupe key {label} must be a non-empty string")
        if ":" in part:
            raise AutomationValidationError(f"Dedupe key {label} may not contain ':'")
    entity = str(entity_id).strip() if entity_id is not None else ""
    if not entity:
        raise AutomationValidationError("Dedupe key entity_id must be non-empty")
    return validate_dedupe_key(f"{entity_type.strip()}:{kind.strip()}:{entity}")


def membership_renewal_key(membership_id: UUID | str) -> str:
    return build_dedupe_key("membership", "renewal", membership_id)


def donation_receipt_key(donation_id: UUID | str) -> str:
    return build_dedupe_key("donation", "receipt", donation_id)


def event_reminder_key(event_id: UUID | str) -> str:
    return build_dedupe_key("event", "reminder", event_id)


def payment_failed_key(invoice_id: UUID | str) -> str:
    return build_dedupe_key("payment", "failed", invoice_id)


def validate_dedupe_key(dedupe_key: Any) -> str:
    if not isinstance(dedupe_key, str) or not dedupe_key.strip():
        raise AutomationValidationError("Dedupe key must be a non-empty string")
    if len(dedupe_key) > DEDUPE_KEY_MAX_LENGTH:
        raise AutomationValidationError(
            f"Dedupe key exceeds {DEDUPE_KEY_MAX_LENGTH} characters"
        )
    return dedupe_key


def prepare_work_item_fields(fields: Mapping[str, Any] | None) -> dict[str, Any]:
    """Validate scanner-supplied business fields and fill defaults."""
    if not isinstance(fields, Mapping):
        raise AutomationValidationError("Work item fields must be an object")

    reserved = sorted(set(fields) & RESERVED_WORK_ITEM_FIELDS)
    if reserved:
        raise AutomationValidationError(f"Reserved work item fields: {', '.join(reserved)}")
    unknown = sorted(str(key) for key in set(fields) - WORK_ITEM_FIELDS)
    if unknown:
        raise AutomationValidationError(f"Unknown work item fields: {', '.join(unknown)}")

    values = dict(fields)
    title = values.get("title")
    if not isinstance(title, str) or not title.strip():
        raise AutomationValidationError("Work item title is required")
    values["title"] = title[:TITLE_MAX_LENGTH]

    values.setdefault("status", WorkItemStatus.OPEN.value)
    for name, enum_cls in _ENUM_FIELDS.items():
        if name not in values:
            continue
        try:
            values[name] = enum_cls(values[name]).value
        except ValueError:
            raise AutomationValidationError(
                f"Invalid work item {name}: {values[name]!r}"
            ) from None

    if values.get("reference_id") is not None:
        values["reference_id"] = str(values["reference_id"])
    return values


# =============================================================================
# Queries
# =============================================================================

def get_work_item(db: Session, org_id: UUID, item_id: UUID) -> WorkItem | None:
    """Get a single work item scoped to org."""
    return db.query(WorkItem).filter(
        WorkItem.id == item_id,
        WorkItem.organization_id == org_id,
    ).first()


def get_by_dedupe_key(db: Session, org_id: UUID, dedupe_key: str) -> WorkItem | None:
    return db.query(WorkItem).filter(
        WorkItem.organization_id == org_id,
        WorkItem.dedupe_key == dedupe_key,
    ).first()


def list_work_items(
    db: Session,
    org_id: UUID,
    status: WorkItemStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[WorkItem]:
    """List work items with optional status filter, soonest due first."""
    query = db.query(WorkItem).filter(WorkItem.organization_id == org_id)
    if status:
        query = query.filter(WorkItem.status == status.value)
    return query.order_by(
        WorkItem.due_at.asc(), WorkItem.created_at.desc(), WorkItem.id
    ).offset(offset).limit(limit).all()


def count_work_items(
    db: Session,
    org_id: UUID,
    status: WorkItemStatus | None = None,
) -> int:
    query = db.query(WorkItem).filter(WorkItem.organization_id == org_id)
    if status:
        query = query.filter(WorkItem.status == status.value)
    return query.count()


# =============================================================================
# User actions (own the status after first insert)
# =============================================================================

def _record_status_change(
    db: Session,
    item: WorkItem,
    action: AuditAction,
    actor: str | None,
    previous_status: str,
) -> None:
    audit_service.record(
        db,
        audit_service.AuditEntry(
            organization_id=item.organization_id,
            action=action,
            entity_type="work_item",
            entity_id=item.id,
            actor=actor,
            metadata={
                "dedupe_key": item.dedupe_key,
                "from_status": previous_status,
                "to_status": item.status,
            },
        ),
    )


def snooze_work_item(
    db: Session,
    org_id: UUID,
    item_id: UUID,
    until: datetime,
    actor: str | None = None,
) -> WorkItem | None:
    """Snooze a work item until the given time."""
    item = get_work_item(db, org_id, item_id)
    if not item:
        return None

    previous_status = item.status
    item.status = WorkItemStatus.SNOOZED.value
    item.snoozed_until = until
    db.commit()
    db.refresh(item)

    _record_status_change(db, item, AuditAction.SNOOZE, actor, previous_status)
    return item


def complete_work_item(
    db: Session,
    org_id: UUID,
    item_id: UUID,
    actor: str | None = None,
) -> WorkItem | None:
    """Mark a work item done."""
    item = get_work_item(db, org_id, item_id)
    if not item:
        return None

    previous_status = item.status
    item.status = WorkItemStatus.DONE.value
    item.completed_at = datetime.now(timezone.utc)
    item.snoozed_until = None
    db.commit()
    db.refresh(item)

    _record_status_change(db, item, AuditAction.COMPLETE, actor, previous_status)
    return item


def reopen_work_item(
    db: Session,
    org_id: UUID,
    item_id: UUID,
    actor: str | None = None,
) -> WorkItem | None:
    """Reopen a snoozed or completed work item."""
    item = get_work_item(db, org_id, item_id)
    if not item:
        return None

    previous_status = item.status
    item.status = WorkItemStatus.OPEN.value
    item.snoozed_until = None
    item.completed_at = None
    db.commit()
    db.refresh(item)

    _record_status_change(db, item, AuditAction.REOPEN, actor, previous_status)
    return item
