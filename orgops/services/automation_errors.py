"""Automation engine exceptions and per-rule error records."""

from dataclasses import dataclass
from uuid import UUID


class AutomationError(Exception):
    """Base exception for automation engine errors."""

    pass


class AutomationValidationError(AutomationError):
    """Caller input rejected before any write (event name, payload, upsert args)."""

    pass


class MalformedConditionError(AutomationValidationError):
    """A rule's filter tree cannot be compiled."""

    pass


class UnsupportedOperatorError(MalformedConditionError):
    """A filter uses an operator the evaluator does not know."""

    def __init__(self, field: str, operator: str) -> None:
        self.field = field
        self.operator = operator
        super().__init__(f"Unsupported operator '{operator}' for field '{field}'")


class AutomationStoreError(AutomationError):
    """Persistence failure raised by a store implementation."""

    pass


@dataclass(frozen=True)
class PerRuleError:
    """
    A failure confined to a single rule.

    Collected by the matcher instead of being raised, so one bad rule
    never stops the others.
    """

    rule_id: UUID
    rule_name: str
    stage: str  # "evaluate" | "enqueue"
    message: str

    def summary(self, max_length: int = 300) -> str:
        text = f"rule {self.rule_id} ({self.rule_name}) {self.stage} failed: {self.message}"
        return text[:max_length]
