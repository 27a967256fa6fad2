"""Enum definitions for application constants."""

from orgops.db.enums.audit import AuditAction
from orgops.db.enums.automation import (
    AutomationEventName,
    AutomationQueueStatus,
    AutomationSourceType,
)
from orgops.db.enums.programs import DonationStatus, MembershipStatus, ProgramEventStatus
from orgops.db.enums.work_items import WorkItemPriority, WorkItemStatus, WorkItemType

__all__ = [
    "AuditAction",
    "AutomationEventName",
    "AutomationQueueStatus",
    "AutomationSourceType",
    "DonationStatus",
    "MembershipStatus",
    "ProgramEventStatus",
    "WorkItemPriority",
    "WorkItemStatus",
    "WorkItemType",
]
