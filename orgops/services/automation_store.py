"""
Persistence boundary for the automation engine.

The engine talks to an AutomationStore protocol; SqlAlchemyAutomationStore is
the production implementation over the application session. Every read and
write is scoped by organization_id.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence
from uuid import UUID

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orgops.core.structured_logging import build_log_context
from orgops.db.enums import AutomationQueueStatus, AutomationSourceType
from orgops.db.models import AutomationEvent, AutomationQueueItem, AutomationRule, WorkItem
from orgops.services.automation_errors import AutomationStoreError

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def trigger_event_set(trigger_events: Any) -> frozenset[str]:
    """Exact event names a rule listens to; anything but a list listens to nothing."""
    if not isinstance(trigger_events, (list, tuple)):
        return frozenset()
    return frozenset(name for name in trigger_events if isinstance(name, str))


@dataclass(frozen=True)
class EventRecord:
    id: UUID
    organization_id: UUID
    name: str
    payload: dict[str, Any]
    source_type: str
    source_id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class RuleRecord:
    id: UUID
    organization_id: UUID
    name: str
    trigger_events: frozenset[str] = field(default_factory=frozenset)
    filters: Any = None
    actions: list = field(default_factory=list)
    is_active: bool = True

    def listens_to(self, event_name: str) -> bool:
        return self.is_active and event_name in self.trigger_events


class AutomationStore(Protocol):
    """Storage operations the engine depends on."""

    def insert_event(
        self,
        org_id: UUID,
        event_name: str,
        payload: dict[str, Any],
        source_type: AutomationSourceType,
        source_id: str | None,
    ) -> EventRecord:
        """Durably log an event. Raises AutomationStoreError."""
        ...

    def list_candidate_rules(self, org_id: UUID, event_name: str) -> Sequence[RuleRecord]:
        """Active rules of org_id listening to event_name. Raises AutomationStoreError."""
        ...

    def insert_queue_entry(
        self,
        org_id: UUID,
        rule_id: UUID,
        event_id: UUID,
        event_name: str,
        payload_snapshot: dict[str, Any],
        max_attempts: int,
    ) -> UUID:
        """Write one pending queue entry. A failure affects only this entry."""
        ...

    def insert_work_item_if_absent(
        self, org_id: UUID, dedupe_key: str, values: dict[str, Any]
    ) -> bool:
        """Atomic insert-or-ignore on (org_id, dedupe_key). True if a row was created."""
        ...

    def commit(self) -> None:
        ...


class SqlAlchemyAutomationStore:
    """
    AutomationStore over a SQLAlchemy session.

    Events are flushed into the caller's transaction (outbox): a business row
    added to the same session commits together with its event.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def insert_event(
        self,
        org_id: UUID,
        event_name: str,
        payload: dict[str, Any],
        source_type: AutomationSourceType,
        source_id: str | None,
    ) -> EventRecord:
        event = AutomationEvent(
            id=uuid.uuid4(),
            organization_id=org_id,
            event_name=event_name,
            event_payload=payload,
            source_type=source_type.value,
            source_id=source_id,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.db.add(event)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise AutomationStoreError(f"Failed to log event {event_name}: {exc}") from exc

        return EventRecord(
            id=event.id,
            organization_id=org_id,
            name=event_name,
            payload=payload,
            source_type=source_type.value,
            source_id=source_id,
            created_at=event.created_at,
        )

    def list_candidate_rules(self, org_id: UUID, event_name: str) -> list[RuleRecord]:
        try:
            rows = (
                self.db.query(AutomationRule)
                .filter(
                    AutomationRule.organization_id == org_id,
                    AutomationRule.is_active.is_(True),
                )
                .order_by(AutomationRule.created_at, AutomationRule.id)
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise AutomationStoreError(f"Failed to load automation rules: {exc}") from exc

        # JSON list containment differs per backend; match exact names here
        rules = [
            RuleRecord(
                id=row.id,
                organization_id=row.organization_id,
                name=row.name,
                trigger_events=trigger_event_set(row.trigger_events),
                filters=row.filters,
                actions=list(row.actions or []),
                is_active=row.is_active,
            )
            for row in rows
        ]
        return [rule for rule in rules if rule.listens_to(event_name)]

    def insert_queue_entry(
        self,
        org_id: UUID,
        rule_id: UUID,
        event_id: UUID,
        event_name: str,
        payload_snapshot: dict[str, Any],
        max_attempts: int,
    ) -> UUID:
        entry = AutomationQueueItem(
            id=uuid.uuid4(),
            organization_id=org_id,
            rule_id=rule_id,
            event_id=event_id,
            event_name=event_name,
            payload_snapshot=payload_snapshot,
            status=AutomationQueueStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts,
            scheduled_for=datetime.now(timezone.utc),
        )
        try:
            # SAVEPOINT: a failed write rolls back only this entry
            with self.db.begin_nested():
                self.db.add(entry)
                self.db.flush()
        except SQLAlchemyError as exc:
            raise AutomationStoreError(f"Failed to enqueue rule {rule_id}: {exc}") from exc
        return entry.id

    def insert_work_item_if_absent(
        self, org_id: UUID, dedupe_key: str, values: dict[str, Any]
    ) -> bool:
        dialect = self.db.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)
        if insert_fn is None:
            raise AutomationStoreError(
                f"Atomic insert-or-ignore is not supported on dialect '{dialect}'"
            )

        stmt = (
            insert_fn(WorkItem)
            .values(
                id=uuid.uuid4(),
                organization_id=org_id,
                dedupe_key=dedupe_key,
                **values,
            )
            .on_conflict_do_nothing(index_elements=["organization_id", "dedupe_key"])
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(
                f"Work item upsert failed: {exc.__class__.__name__}",
                extra=build_log_context(org_id=org_id, dedupe_key=dedupe_key),
            )
            raise AutomationStoreError(f"Failed to upsert work item {dedupe_key}: {exc}") from exc
        return result.rowcount == 1

    def commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise AutomationStoreError(f"Failed to commit automation writes: {exc}") from exc
