"""SQLAlchemy ORM models."""

from orgops.db.models.audit import AuditLog
from orgops.db.models.automation import AutomationEvent, AutomationQueueItem, AutomationRule
from orgops.db.models.organizations import Organization
from orgops.db.models.programs import Donation, Membership, ProgramEvent
from orgops.db.models.work_items import WorkItem

__all__ = [
    "AuditLog",
    "AutomationEvent",
    "AutomationQueueItem",
    "AutomationRule",
    "Donation",
    "Membership",
    "Organization",
    "ProgramEvent",
    "WorkItem",
]
