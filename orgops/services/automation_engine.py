"""
Automation engine - emit events, match rules, enqueue actions.

Flow for emit():
1. Validate name, source type and payload (AutomationValidationError, no writes)
2. Log the event (hard failure: nothing is matched against an unlogged event)
3. Match active rules of the same org; evaluate filters; enqueue pending entries
4. Commit once and report counts plus bounded per-rule error summaries

Failures confined to one rule never stop the loop. Queue entries are the only
hand-off to the action worker, which owns every later status transition.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from orgops.core.config import settings
from orgops.core.structured_logging import build_log_context
from orgops.db.enums import AutomationSourceType
from orgops.services import work_item_service
from orgops.services.automation_conditions import compile_conditions, evaluate
from orgops.services.automation_errors import (
    AutomationValidationError,
    MalformedConditionError,
    PerRuleError,
)
from orgops.services.automation_events import (
    normalize_event_name,
    normalize_payload,
    normalize_source_type,
)
from orgops.services.automation_store import (
    AutomationStore,
    EventRecord,
    SqlAlchemyAutomationStore,
)

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    matched_rule_ids: list[UUID] = field(default_factory=list)
    queued: int = 0
    errors: list[PerRuleError] = field(default_factory=list)


@dataclass
class EmitResult:
    event_id: UUID
    event_name: str
    rules_matched: int = 0
    rules_queued: int = 0
    errors: list[str] = field(default_factory=list)  # bounded summaries
    errors_total: int = 0


def coerce_org_id(org_id: Any) -> UUID:
    if isinstance(org_id, UUID):
        return org_id
    try:
        return UUID(str(org_id))
    except ValueError:
        raise AutomationValidationError(f"Invalid organization id: {org_id!r}") from None


class AutomationEngine:
    """Event emitter, rule matcher and work-item upsert over an AutomationStore."""

    def __init__(
        self,
        store: AutomationStore,
        max_reported_errors: int | None = None,
        queue_max_attempts: int | None = None,
    ) -> None:
        self.store = store
        self.max_reported_errors = (
            settings.AUTOMATION_MAX_REPORTED_ERRORS
            if max_reported_errors is None
            else max_reported_errors
        )
        self.queue_max_attempts = (
            settings.AUTOMATION_QUEUE_MAX_ATTEMPTS
            if queue_max_attempts is None
            else queue_max_attempts
        )

    # -------------------------------------------------------------------------
    # Emit
    # -------------------------------------------------------------------------

    def emit(
        self,
        org_id: UUID,
        event_name: str,
        payload: Mapping[str, Any] | None = None,
        source_type: AutomationSourceType | str = AutomationSourceType.API,
        source_id: str | None = None,
    ) -> EmitResult:
        """
        Log an event and queue every matching rule.

        Raises:
            AutomationValidationError: bad input, nothing written
            AutomationStoreError: the event could not be logged or rules not loaded
        """
        org_id = coerce_org_id(org_id)
        name = normalize_event_name(event_name)
        source = normalize_source_type(source_type)
        body = normalize_payload(payload)
        if source_id is not None:
            source_id = str(source_id)

        event = self.store.insert_event(org_id, name, body, source, source_id)
        match = self.match(event)
        self.store.commit()

        summaries = [error.summary() for error in match.errors]
        result = EmitResult(
            event_id=event.id,
            event_name=name,
            rules_matched=len(match.matched_rule_ids),
            rules_queued=match.queued,
            errors=summaries[: self.max_reported_errors],
            errors_total=len(summaries),
        )
        logger.info(
            f"Automation event {name}: {result.rules_matched} matched, "
            f"{result.rules_queued} queued, {result.errors_total} errors",
            extra=build_log_context(
                org_id=org_id, event_name=name, source_type=source.value
            ),
        )
        return result

    # -------------------------------------------------------------------------
    # Match
    # -------------------------------------------------------------------------

    def match(self, event: EventRecord) -> MatchResult:
        """
        Evaluate candidate rules against a logged event and enqueue matches.

        Never raises for a single rule; only a failure to list rules propagates.
        """
        result = MatchResult()
        rules = self.store.list_candidate_rules(event.organization_id, event.name)

        for rule in rules:
            if rule.organization_id != event.organization_id:
                logger.warning(
                    "Skipping rule from another organization",
                    extra=build_log_context(
                        org_id=event.organization_id, rule_id=rule.id, event_name=event.name
                    ),
                )
                continue
            if not rule.listens_to(event.name):
                continue

            try:
                matched = evaluate(compile_conditions(rule.filters), event.payload)
            except MalformedConditionError as exc:
                result.errors.append(PerRuleError(rule.id, rule.name, "evaluate", str(exc)))
                logger.warning(
                    f"Rule filters rejected: {exc}",
                    extra=build_log_context(
                        org_id=event.organization_id, rule_id=rule.id, event_name=event.name
                    ),
                )
                continue
            except Exception as exc:
                result.errors.append(
                    PerRuleError(rule.id, rule.name, "evaluate", f"{exc.__class__.__name__}: {exc}")
                )
                logger.exception(
                    "Rule evaluation failed",
                    extra=build_log_context(
                        org_id=event.organization_id, rule_id=rule.id, event_name=event.name
                    ),
                )
                continue

            if not matched:
                continue
            result.matched_rule_ids.append(rule.id)

            try:
                self.store.insert_queue_entry(
                    org_id=event.organization_id,
                    rule_id=rule.id,
                    event_id=event.id,
                    event_name=event.name,
                    payload_snapshot=copy.deepcopy(event.payload),
                    max_attempts=self.queue_max_attempts,
                )
            except Exception as exc:
                result.errors.append(PerRuleError(rule.id, rule.name, "enqueue", str(exc)))
                logger.warning(
                    f"Failed to enqueue rule: {exc.__class__.__name__}",
                    extra=build_log_context(
                        org_id=event.organization_id, rule_id=rule.id, event_name=event.name
                    ),
                )
                continue
            result.queued += 1

        return result

    # -------------------------------------------------------------------------
    # Idempotent upsert
    # -------------------------------------------------------------------------

    def upsert_if_absent(
        self,
        org_id: UUID,
        dedupe_key: str,
        fields: Mapping[str, Any],
    ) -> bool:
        """
        Create a work item unless (org_id, dedupe_key) already exists.

        An existing row is never modified. Returns True if a row was created.
        """
        org_id = coerce_org_id(org_id)
        dedupe_key = work_item_service.validate_dedupe_key(dedupe_key)
        values = work_item_service.prepare_work_item_fields(fields)

        created = self.store.insert_work_item_if_absent(org_id, dedupe_key, values)
        if created:
            logger.info(
                "Work item created",
                extra=build_log_context(org_id=org_id, dedupe_key=dedupe_key),
            )
        return created


def get_automation_engine(db: Session) -> AutomationEngine:
    """Default wiring: engine over the given session."""
    return AutomationEngine(SqlAlchemyAutomationStore(db))
