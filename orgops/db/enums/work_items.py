"""Work item enums."""

from enum import Enum


class WorkItemType(str, Enum):
    ALERT = "alert"
    TASK = "task"


class WorkItemStatus(str, Enum):
    """Status is owned by the user after the first insert."""

    OPEN = "open"
    SNOOZED = "snoozed"
    DONE = "done"


class WorkItemPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
