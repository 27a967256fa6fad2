"""Automation-related enums."""

from enum import Enum


class AutomationSourceType(str, Enum):
    """Where an automation event originated."""

    WEBHOOK = "webhook"
    API = "api"
    CRON = "cron"
    MANUAL = "manual"


class AutomationQueueStatus(str, Enum):
    """
    Queue entry lifecycle.

    The engine only creates PENDING rows; the action worker owns every
    other transition.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class AutomationEventName(str, Enum):
    """
    Well-known automation events (entity.action).

    The taxonomy is open: any well-formed dotted name may be emitted and
    simply matches no rules unless one listens for it.
    """

    # Donations
    DONATION_CREATED = "donation.created"
    DONATION_REFUNDED = "donation.refunded"
    # Membership
    MEMBERSHIP_CREATED = "membership.created"
    MEMBERSHIP_RENEWED = "membership.renewed"
    MEMBERSHIP_EXPIRED = "membership.expired"
    MEMBERSHIP_EXPIRING_SOON = "membership.expiring_soon"
    # Members
    MEMBER_CREATED = "member.created"
    MEMBER_HEALTH_ALERT = "member.health.alert"
    MEMBER_PROFILE_UPDATED = "member.profile.updated"
    # Payments and invoices
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    INVOICE_OVERDUE = "invoice.overdue"
    # Grants
    GRANT_APPLICATION_SUBMITTED = "grant.application.submitted"
    GRANT_APPLICATION_READY_FOR_REVIEW = "grant.application.ready_for_review"
    GRANT_REVIEW_ASSIGNED = "grant.review.assigned"
    GRANT_REVIEW_COMPLETED = "grant.review.completed"
    GRANT_AWARDED = "grant.awarded"
    GRANT_DECLINED = "grant.declined"
    GRANT_REPORT_DUE = "grant.report.due"
    GRANT_DISBURSEMENT_SCHEDULED = "grant.disbursement.scheduled"
    GRANT_DISBURSEMENT_PAID = "grant.disbursement.paid"
    # Program events
    EVENT_REGISTRATION_CREATED = "event.registration.created"
    EVENT_REGISTRATION_PAID = "event.registration.paid"
    EVENT_REGISTRATION_CANCELED = "event.registration.canceled"
    EVENT_REMINDER_24H = "event.reminder.24h"
    EVENT_COMPLETED = "event.completed"
    # Volunteers
    VOLUNTEER_SIGNUP_CREATED = "volunteer.signup.created"
    VOLUNTEER_HOURS_LOGGED = "volunteer.hours.logged"
    VOLUNTEER_HOURS_MILESTONE = "volunteer.hours.milestone"
    # Board
    BOARD_MEETING_REMINDER_7D = "board.meeting.reminder.7d"
    BOARD_MEETING_REMINDER_1D = "board.meeting.reminder.1d"
    BOARD_VOTE_CREATED = "board.vote.created"
    # Compliance ticks
    COMPLIANCE_TICK_DAILY = "compliance.tick.daily"
    COMPLIANCE_TICK_WEEKLY = "compliance.tick.weekly"
    # Approvals
    APPROVAL_CREATED = "approval.created"
