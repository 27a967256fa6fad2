"""Tests for event emission and rule matching."""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from orgops.db.enums import AutomationQueueStatus, AutomationSourceType
from orgops.db.models import AutomationEvent, AutomationQueueItem, Donation
from orgops.services.automation_engine import AutomationEngine, get_automation_engine
from orgops.services.automation_errors import AutomationStoreError, AutomationValidationError
from orgops.services.automation_store import (
    EventRecord,
    RuleRecord,
    SqlAlchemyAutomationStore,
    trigger_event_set,
)


# =============================================================================
# In-memory store
# =============================================================================

class FakeAutomationStore:
    """AutomationStore kept in lists; can fail chosen writes."""

    def __init__(self, rules=None, fail_event=False, fail_rules=False, fail_enqueue_for=()):
        self.rules = list(rules or [])
        self.events: list[EventRecord] = []
        self.queue: list[dict] = []
        self.work_items: dict[tuple, dict] = {}
        self.commits = 0
        self.fail_event = fail_event
        self.fail_rules = fail_rules
        self.fail_enqueue_for = set(fail_enqueue_for)

    def insert_event(self, org_id, event_name, payload, source_type, source_id):
        if self.fail_event:
            raise AutomationStoreError("event log unavailable")
        record = EventRecord(
            id=uuid.uuid4(),
            organization_id=org_id,
            name=event_name,
            payload=payload,
            source_type=source_type.value,
            source_id=source_id,
            created_at=datetime.now(timezone.utc),
        )
        self.events.append(record)
        return record

    def list_candidate_rules(self, org_id, event_name):
        if self.fail_rules:
            raise AutomationStoreError("rules unavailable")
        # Deliberately loose: the engine must enforce org and trigger itself
        return list(self.rules)

    def insert_queue_entry(self, org_id, rule_id, event_id, event_name, payload_snapshot, max_attempts):
        if rule_id in self.fail_enqueue_for:
            raise AutomationStoreError("queue write failed")
        entry_id = uuid.uuid4()
        self.queue.append(
            {
                "id": entry_id,
                "organization_id": org_id,
                "rule_id": rule_id,
                "event_id": event_id,
                "event_name": event_name,
                "payload_snapshot": payload_snapshot,
                "max_attempts": max_attempts,
            }
        )
        return entry_id

    def insert_work_item_if_absent(self, org_id, dedupe_key, values):
        key = (org_id, dedupe_key)
        if key in self.work_items:
            return False
        self.work_items[key] = dict(values)
        return True

    def commit(self):
        self.commits += 1


def rule(org_id, name, triggers, filters=None, is_active=True):
    return RuleRecord(
        id=uuid.uuid4(),
        organization_id=org_id,
        name=name,
        trigger_events=trigger_event_set(triggers),
        filters=filters,
        actions=[{"type": "notify_staff"}],
        is_active=is_active,
    )


ORG_ID = uuid.uuid4()


# =============================================================================
# Matching (store-agnostic)
# =============================================================================

def test_large_donation_rule_queues_once_and_other_trigger_does_not():
    large = rule(ORG_ID, "Large Donation Alert", ["donation.created"], {"amount_cents": {"gte": 100000}})
    welcome = rule(ORG_ID, "Welcome Member", ["member.created"])
    store = FakeAutomationStore(rules=[large, welcome])
    engine = AutomationEngine(store)

    result = engine.emit(ORG_ID, "donation.created", {"amount_cents": 150000})

    assert result.rules_matched == 1
    assert result.rules_queued == 1
    assert result.errors == []
    assert [entry["rule_id"] for entry in store.queue] == [large.id]
    assert store.queue[0]["event_id"] == result.event_id
    assert store.commits == 1


def test_filter_miss_queues_nothing():
    large = rule(ORG_ID, "Large Donation Alert", ["donation.created"], {"amount_cents": {"gte": 100000}})
    store = FakeAutomationStore(rules=[large])

    result = AutomationEngine(store).emit(ORG_ID, "donation.created", {"amount_cents": 50000})

    assert result.rules_matched == 0
    assert store.queue == []
    assert len(store.events) == 1


def test_trigger_membership_is_exact():
    prefix = rule(ORG_ID, "Prefix", ["donation"])
    longer = rule(ORG_ID, "Longer", ["donation.created.extra"])
    store = FakeAutomationStore(rules=[prefix, longer])

    result = AutomationEngine(store).emit(ORG_ID, "donation.created", {})

    assert result.rules_matched == 0


def test_rule_with_no_filters_matches_every_instance():
    catch_all = rule(ORG_ID, "Catch all", ["donation.created"])
    store = FakeAutomationStore(rules=[catch_all])
    engine = AutomationEngine(store)

    engine.emit(ORG_ID, "donation.created", {})
    engine.emit(ORG_ID, "donation.created", {"amount_cents": 1})

    assert len(store.queue) == 2
    assert store.queue[0]["event_id"] != store.queue[1]["event_id"]


def test_empty_triggers_and_inactive_rules_never_match():
    store = FakeAutomationStore(
        rules=[
            rule(ORG_ID, "No triggers", []),
            rule(ORG_ID, "Not a list", "donation.created"),
            rule(ORG_ID, "Inactive", ["donation.created"], is_active=False),
        ]
    )
    result = AutomationEngine(store).emit(ORG_ID, "donation.created", {})
    assert result.rules_matched == 0


def test_rules_from_another_org_are_skipped():
    foreign = rule(uuid.uuid4(), "Foreign", ["donation.created"])
    store = FakeAutomationStore(rules=[foreign])

    result = AutomationEngine(store).emit(ORG_ID, "donation.created", {})

    assert result.rules_matched == 0
    assert store.queue == []


def test_malformed_filter_does_not_block_other_rules():
    broken = rule(ORG_ID, "Broken", ["donation.created"], {"amount_cents": {"between": [1, 2]}})
    ok_one = rule(ORG_ID, "First", ["donation.created"])
    ok_two = rule(ORG_ID, "Second", ["donation.created"], {"amount_cents": {"gt": 0}})
    store = FakeAutomationStore(rules=[ok_one, broken, ok_two])

    result = AutomationEngine(store).emit(ORG_ID, "donation.created", {"amount_cents": 10})

    assert result.rules_matched == 2
    assert result.rules_queued == 2
    assert result.errors_total == 1
    assert "Broken" in result.errors[0]
    assert "evaluate" in result.errors[0]
    assert {entry["rule_id"] for entry in store.queue} == {ok_one.id, ok_two.id}


def test_enqueue_failure_is_isolated_per_rule():
    first = rule(ORG_ID, "First", ["payment.failed"])
    flaky = rule(ORG_ID, "Flaky", ["payment.failed"])
    last = rule(ORG_ID, "Last", ["payment.failed"])
    store = FakeAutomationStore(rules=[first, flaky, last], fail_enqueue_for={flaky.id})

    result = AutomationEngine(store).emit(ORG_ID, "payment.failed", {"amount_cents": 500})

    assert result.rules_matched == 3
    assert result.rules_queued == 2
    assert result.errors_total == 1
    assert "enqueue" in result.errors[0]
    assert [entry["rule_id"] for entry in store.queue] == [first.id, last.id]


def test_error_list_is_bounded_but_total_is_exact():
    broken = [
        rule(ORG_ID, f"Broken {i}", ["donation.created"], {"x": {"bogus": 1}})
        for i in range(5)
    ]
    store = FakeAutomationStore(rules=broken)

    result = AutomationEngine(store, max_reported_errors=2).emit(ORG_ID, "donation.created", {})

    assert len(result.errors) == 2
    assert result.errors_total == 5


def test_queue_snapshot_is_detached_from_payload():
    catch_all = rule(ORG_ID, "Catch all", ["donation.created"])
    store = FakeAutomationStore(rules=[catch_all])
    payload = {"donor": {"tags": ["vip"]}}

    AutomationEngine(store, queue_max_attempts=5).emit(ORG_ID, "donation.created", payload)

    payload["donor"]["tags"].append("mutated")
    store.events[0].payload["donor"]["tags"].append("also mutated")
    assert store.queue[0]["payload_snapshot"] == {"donor": {"tags": ["vip"]}}
    assert store.queue[0]["max_attempts"] == 5


# =============================================================================
# Validation and hard failures
# =============================================================================

@pytest.mark.parametrize(
    "name",
    ["", "   ", "donation", "Donation.Created", "donation created", ".created", "a." + "x" * 120, None],
)
def test_invalid_event_names_write_nothing(name):
    store = FakeAutomationStore(rules=[rule(ORG_ID, "Any", ["donation.created"])])

    with pytest.raises(AutomationValidationError):
        AutomationEngine(store).emit(ORG_ID, name, {})

    assert store.events == []


def test_unknown_event_name_is_logged_and_matches_nothing():
    store = FakeAutomationStore(rules=[rule(ORG_ID, "Any", ["donation.created"])])

    result = AutomationEngine(store).emit(ORG_ID, "custom.thing_happened", {})

    assert len(store.events) == 1
    assert result.rules_matched == 0


def test_legacy_event_name_is_normalized():
    welcome = rule(ORG_ID, "Welcome", ["member.created"])
    store = FakeAutomationStore(rules=[welcome])

    result = AutomationEngine(store).emit(ORG_ID, "member_created", {})

    assert result.event_name == "member.created"
    assert store.events[0].name == "member.created"
    assert result.rules_queued == 1


def test_invalid_payload_and_source_are_rejected():
    store = FakeAutomationStore()
    engine = AutomationEngine(store)

    with pytest.raises(AutomationValidationError):
        engine.emit(ORG_ID, "donation.created", ["not", "an", "object"])
    with pytest.raises(AutomationValidationError):
        engine.emit(ORG_ID, "donation.created", {}, source_type="carrier-pigeon")
    with pytest.raises(AutomationValidationError):
        engine.emit("not-a-uuid", "donation.created", {})
    assert store.events == []


def test_event_log_failure_fails_fast():
    store = FakeAutomationStore(rules=[rule(ORG_ID, "Any", ["donation.created"])], fail_event=True)

    with pytest.raises(AutomationStoreError):
        AutomationEngine(store).emit(ORG_ID, "donation.created", {})

    assert store.queue == []
    assert store.commits == 0


def test_rule_store_outage_propagates():
    store = FakeAutomationStore(fail_rules=True)
    with pytest.raises(AutomationStoreError):
        AutomationEngine(store).emit(ORG_ID, "donation.created", {})


def test_source_type_accepts_strings():
    store = FakeAutomationStore()
    AutomationEngine(store).emit(ORG_ID, "payment.failed", {}, "webhook", 12345)
    assert store.events[0].source_type == AutomationSourceType.WEBHOOK.value
    assert store.events[0].source_id == "12345"


# =============================================================================
# SQLAlchemy store
# =============================================================================

def test_emit_persists_event_and_pending_queue_entry(db, test_org, other_org, make_rule):
    large = make_rule(
        test_org, "Large Donation Alert", ["donation.created"], {"amount_cents": {"gte": 100000}}
    )
    make_rule(test_org, "Welcome Member", ["member.created"])
    make_rule(test_org, "Disabled", ["donation.created"], is_active=False)
    make_rule(other_org, "Other tenant", ["donation.created"])

    result = get_automation_engine(db).emit(
        test_org.id, "donation.created", {"amount_cents": 150000}, AutomationSourceType.WEBHOOK, "evt_1"
    )

    assert result.rules_matched == 1
    event = db.query(AutomationEvent).filter(AutomationEvent.id == result.event_id).one()
    assert event.organization_id == test_org.id
    assert event.event_payload == {"amount_cents": 150000}
    assert event.source_type == "webhook"
    assert event.source_id == "evt_1"

    entries = db.query(AutomationQueueItem).all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.rule_id == large.id
    assert entry.event_id == result.event_id
    assert entry.organization_id == test_org.id
    assert entry.status == AutomationQueueStatus.PENDING.value
    assert entry.attempts == 0
    assert entry.max_attempts == 3
    assert entry.payload_snapshot == {"amount_cents": 150000}


def test_malformed_stored_rule_is_isolated(db, test_org, make_rule):
    make_rule(test_org, "Broken", ["donation.created"], {"amount_cents": {"between": [1, 5]}})
    good = make_rule(test_org, "Good", ["donation.created"])

    result = get_automation_engine(db).emit(test_org.id, "donation.created", {"amount_cents": 3})

    assert result.rules_queued == 1
    assert result.errors_total == 1
    assert [entry.rule_id for entry in db.query(AutomationQueueItem).all()] == [good.id]


def test_event_commits_with_business_rows_in_same_session(db, test_org):
    donation = Donation(
        id=uuid.uuid4(), organization_id=test_org.id, amount_cents=2500, status="succeeded"
    )
    db.add(donation)
    result = get_automation_engine(db).emit(
        test_org.id, "donation.created", {"donation_id": str(donation.id)}
    )
    db.rollback()

    assert db.query(Donation).filter(Donation.id == donation.id).count() == 1
    assert db.query(AutomationEvent).filter(AutomationEvent.id == result.event_id).count() == 1


class MySqlSession:
    """Session stand-in bound to a dialect without ON CONFLICT support."""

    def __init__(self):
        self.executed = []

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name="mysql"))

    def execute(self, stmt):
        self.executed.append(stmt)


def test_upsert_rejects_dialect_without_insert_or_ignore():
    session = MySqlSession()
    engine = AutomationEngine(SqlAlchemyAutomationStore(session))

    with pytest.raises(AutomationStoreError, match="mysql"):
        engine.upsert_if_absent(ORG_ID, "donation:receipt:abc", {"title": "Send receipt"})

    assert session.executed == []
