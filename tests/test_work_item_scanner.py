"""Tests for the daily work-item scan."""

import uuid
from datetime import timedelta

from orgops.core.config import settings
from orgops.db.enums import AuditAction, WorkItemStatus
from orgops.db.models import AuditLog, Donation, Membership, ProgramEvent, WorkItem
from orgops.services import work_item_scanner, work_item_service
from orgops.services.automation_engine import AutomationEngine, get_automation_engine
from orgops.services.automation_errors import AutomationStoreError
from orgops.services.automation_store import SqlAlchemyAutomationStore


def add_membership(db, org, end_date, status="active", name="Pat Member"):
    membership = Membership(
        id=uuid.uuid4(),
        organization_id=org.id,
        member_name=name,
        member_email="pat@example.org",
        status=status,
        end_date=end_date,
    )
    db.add(membership)
    db.flush()
    return membership


def add_donation(db, org, status="succeeded", receipt_sent_at=None):
    donation = Donation(
        id=uuid.uuid4(),
        organization_id=org.id,
        donor_name=None,
        donor_email="donor@example.org",
        amount_cents=150000,
        status=status,
        receipt_sent_at=receipt_sent_at,
    )
    db.add(donation)
    db.flush()
    return donation


def add_program_event(db, org, start_date, status="published", title="Spring Gala"):
    program_event = ProgramEvent(
        id=uuid.uuid4(),
        organization_id=org.id,
        title=title,
        status=status,
        start_date=start_date,
    )
    db.add(program_event)
    db.flush()
    return program_event


def org_items(db, org):
    return db.query(WorkItem).filter(WorkItem.organization_id == org.id).all()


def test_renewal_scan_is_idempotent(db, test_org, now):
    membership = add_membership(db, test_org, now + timedelta(days=20))

    first = work_item_scanner.scan_work_items(db, test_org.id, now=now)
    count_after_first = len(org_items(db, test_org))
    second = work_item_scanner.scan_work_items(db, test_org.id, now=now)

    assert first.created == 1
    assert second.created == 0
    assert second.candidates == 1
    assert len(org_items(db, test_org)) == count_after_first == 1

    item = org_items(db, test_org)[0]
    assert item.dedupe_key == f"membership:renewal:{membership.id}"
    assert item.item_type == "alert"
    assert item.module == "memberships"
    assert item.title == "Renewal due: Pat Member"
    assert item.reference_id == str(membership.id)
    assert item.actions["primary"]["label"] == "Send reminder"


def test_rescan_leaves_snoozed_item_untouched(db, test_org, now):
    add_membership(db, test_org, now + timedelta(days=20))
    work_item_scanner.scan_work_items(db, test_org.id, now=now)
    item = org_items(db, test_org)[0]
    work_item_service.snooze_work_item(db, test_org.id, item.id, now + timedelta(days=5))

    result = work_item_scanner.scan_work_items(db, test_org.id, now=now)

    assert result.created == 0
    db.expire_all()
    assert org_items(db, test_org)[0].status == WorkItemStatus.SNOOZED.value


def test_membership_window_and_status(db, test_org, now):
    add_membership(db, test_org, now + timedelta(days=45))
    add_membership(db, test_org, now - timedelta(days=1))
    add_membership(db, test_org, now + timedelta(days=10), status="canceled")
    add_membership(db, test_org, None)

    result = work_item_scanner.scan_work_items(db, test_org.id, now=now)

    assert result.candidates == 0
    assert org_items(db, test_org) == []


def test_donation_receipts(db, test_org, now):
    pending_receipt = add_donation(db, test_org)
    add_donation(db, test_org, receipt_sent_at=now)
    add_donation(db, test_org, status="refunded")

    result = work_item_scanner.scan_work_items(db, test_org.id, now=now)

    assert result.created == 1
    item = org_items(db, test_org)[0]
    assert item.dedupe_key == f"donation:receipt:{pending_receipt.id}"
    assert item.title == "Send receipt: donor@example.org"
    assert "$1500.00" in item.body


def test_event_reminder_window(db, test_org, now):
    in_window = add_program_event(db, test_org, now + timedelta(days=7, hours=3))
    add_program_event(db, test_org, now + timedelta(days=8, hours=1), title="Too late")
    add_program_event(db, test_org, now + timedelta(days=6), title="Too soon")
    add_program_event(db, test_org, now + timedelta(days=7, hours=3), status="draft", title="Draft")

    result = work_item_scanner.scan_work_items(db, test_org.id, now=now)

    assert result.created == 1
    item = org_items(db, test_org)[0]
    assert item.dedupe_key == f"event:reminder:{in_window.id}"
    assert item.title == "Send reminders: Spring Gala"


def test_scan_is_tenant_scoped(db, test_org, other_org, now):
    add_membership(db, other_org, now + timedelta(days=5))

    result = work_item_scanner.scan_work_items(db, test_org.id, now=now)

    assert result.candidates == 0
    assert org_items(db, other_org) == []


class FlakyStore(SqlAlchemyAutomationStore):
    """Fails the upsert for chosen dedupe keys."""

    def __init__(self, db, failing_keys):
        super().__init__(db)
        self.failing_keys = set(failing_keys)

    def insert_work_item_if_absent(self, org_id, dedupe_key, values):
        if dedupe_key in self.failing_keys:
            raise AutomationStoreError("disk full")
        return super().insert_work_item_if_absent(org_id, dedupe_key, values)


def test_row_failure_does_not_stop_scan(db, test_org, now):
    bad = add_membership(db, test_org, now + timedelta(days=3), name="Bad")
    add_membership(db, test_org, now + timedelta(days=4), name="Good")
    add_donation(db, test_org)
    engine = AutomationEngine(
        FlakyStore(db, {work_item_service.membership_renewal_key(bad.id)})
    )

    result = work_item_scanner.scan_work_items(db, test_org.id, now=now, engine=engine)

    assert result.candidates == 3
    assert result.created == 2
    assert result.errors_total == 1
    assert "disk full" in result.errors[0]


def test_scan_records_audit_entry(db, test_org, now):
    add_donation(db, test_org)

    work_item_scanner.scan_work_items(db, test_org.id, now=now)

    entry = (
        db.query(AuditLog)
        .filter(
            AuditLog.organization_id == test_org.id,
            AuditLog.action == AuditAction.SCAN.value,
        )
        .one()
    )
    assert entry.actor == "system:scheduler"
    assert entry.metadata_ == {"candidates": 1, "created": 1, "errors": 0}


def test_scan_all_organizations(db, test_org, other_org, now):
    add_membership(db, test_org, now + timedelta(days=5))
    add_donation(db, other_org)

    results = work_item_scanner.scan_all_organizations(db, now=now)
    total = work_item_scanner.WorkItemScanResult.combine(results)

    assert {result.organization_id for result in results} >= {test_org.id, other_org.id}
    assert total.created == 2
    assert total.errors == []


def test_combine_bounds_errors(monkeypatch):
    monkeypatch.setattr(settings, "AUTOMATION_MAX_REPORTED_ERRORS", 2)
    results = []
    for _ in range(3):
        result = work_item_scanner.WorkItemScanResult()
        result.add_error("boom")
        results.append(result)

    total = work_item_scanner.WorkItemScanResult.combine(results)

    assert total.errors == ["boom", "boom"]
    assert total.errors_total == 3


def test_default_engine_is_sqlalchemy(db):
    assert isinstance(get_automation_engine(db).store, SqlAlchemyAutomationStore)
