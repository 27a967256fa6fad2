"""Automation core: event log, rules, queue, work items, audit + scan sources

Revision ID: 0001_automation_core
Revises:
Create Date: 2026-10-19

Tables:
- organizations: tenants
- automation_event_log: immutable emitted events
- automation_rules: tenant-scoped trigger/filter/action rules
- automation_queue: pending hand-off entries for the action worker
- work_items: deduplicated staff alerts/tasks (unique org + dedupe_key)
- audit_logs: best-effort mutation log
- memberships, donations, program_events: rows the daily scan reads
"""

from alembic import op
import sqlalchemy as sa

from orgops.db.types import JSONType


# revision identifiers, used by Alembic.
revision = "0001_automation_core"
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True)


def _org_column() -> sa.Column:
    return sa.Column(
        "organization_id",
        sa.Uuid(),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        _timestamp("created_at"),
    )

    # automation_event_log - written once per emit, never updated
    op.create_table(
        "automation_event_log",
        _id_column(),
        _org_column(),
        sa.Column("event_name", sa.String(100), nullable=False),
        sa.Column("event_payload", JSONType, nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),  # webhook, api, cron, manual
        sa.Column("source_id", sa.String(255), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_auto_event_org_created", "automation_event_log", ["organization_id", "created_at"]
    )
    op.create_index(
        "idx_auto_event_org_name", "automation_event_log", ["organization_id", "event_name"]
    )

    op.create_table(
        "automation_rules",
        _id_column(),
        _org_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("trigger_events", JSONType, nullable=False),
        sa.Column("filters", JSONType, nullable=True),
        sa.Column("actions", JSONType, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index(
        "idx_auto_rule_org_active", "automation_rules", ["organization_id", "is_active"]
    )

    # automation_queue - engine creates 'pending'; the action worker owns the rest
    op.create_table(
        "automation_queue",
        _id_column(),
        _org_column(),
        sa.Column(
            "rule_id",
            sa.Uuid(),
            sa.ForeignKey("automation_rules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "event_id",
            sa.Uuid(),
            sa.ForeignKey("automation_event_log.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_name", sa.String(100), nullable=False),
        sa.Column("payload_snapshot", JSONType, nullable=False),
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="pending"
        ),  # pending, processing, done, failed
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        _timestamp("scheduled_for"),
        sa.Column("last_error", sa.Text, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_auto_queue_status_scheduled", "automation_queue", ["status", "scheduled_for"]
    )
    op.create_index("idx_auto_queue_org_rule", "automation_queue", ["organization_id", "rule_id"])
    op.create_index("idx_auto_queue_event", "automation_queue", ["event_id"])

    # work_items - unique (organization_id, dedupe_key) backs insert-or-ignore
    op.create_table(
        "work_items",
        _id_column(),
        _org_column(),
        sa.Column("dedupe_key", sa.String(255), nullable=False),
        sa.Column("item_type", sa.String(20), nullable=False, server_default="task"),
        sa.Column("module", sa.String(50), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text, nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="normal"),
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="open"
        ),  # open, snoozed, done
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.String(255), nullable=True),
        sa.Column("actions", JSONType, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("organization_id", "dedupe_key", name="uq_work_items_org_dedupe"),
    )
    op.create_index("idx_work_items_org_status", "work_items", ["organization_id", "status"])

    op.create_table(
        "audit_logs",
        _id_column(),
        _org_column(),
        sa.Column("actor", sa.String(255), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("metadata", JSONType, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_audit_org_created", "audit_logs", ["organization_id", "created_at"])
    op.create_index(
        "idx_audit_org_entity", "audit_logs", ["organization_id", "entity_type", "entity_id"]
    )

    op.create_table(
        "memberships",
        _id_column(),
        _org_column(),
        sa.Column("member_name", sa.String(255), nullable=True),
        sa.Column("member_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_memberships_org_status_end",
        "memberships",
        ["organization_id", "status", "end_date"],
    )

    op.create_table(
        "donations",
        _id_column(),
        _org_column(),
        sa.Column("donor_name", sa.String(255), nullable=True),
        sa.Column("donor_email", sa.String(255), nullable=True),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("receipt_sent_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_donations_org_status", "donations", ["organization_id", "status"])

    op.create_table(
        "program_events",
        _id_column(),
        _org_column(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_program_events_org_start",
        "program_events",
        ["organization_id", "status", "start_date"],
    )


def downgrade() -> None:
    op.drop_table("program_events")
    op.drop_table("donations")
    op.drop_table("memberships")
    op.drop_table("audit_logs")
    op.drop_table("work_items")
    op.drop_table("automation_queue")
    op.drop_table("automation_rules")
    op.drop_table("automation_event_log")
    op.drop_table("organizations")
