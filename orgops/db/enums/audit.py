"""Audit enums."""

from enum import Enum


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    SNOOZE = "snooze"
    COMPLETE = "complete"
    REOPEN = "reopen"
    SCAN = "scan"
