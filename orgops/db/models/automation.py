"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from orgops.db.base import Base
from orgops.db.types import JSONType


class AutomationEvent(Base):
    """
    Immutable log of every emitted automation event.

    Written once by the emitter before any rule matching; never updated.
    """

    __tablename__ = "automation_event_log"
    __table_args__ = (
        Index("idx_auto_event_org_created", "organization_id", "created_at"),
        Index("idx_auto_event_org_name", "organization_id", "event_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)  # AutomationSourceType
    source_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class AutomationRule(Base):
    """
    Tenant-scoped rule binding event names and a filter tree to actions.

    Authored outside the engine; the engine only reads it.
    An empty trigger_events list never matches.
    """

    __tablename__ = "automation_rules"
    __table_args__ = (
        Index("idx_auto_rule_org_active", "organization_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Trigger: list of dot-namespaced event names
    trigger_events: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    # Field path -> literal or operator object
    filters: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Ordered action descriptors, executed by the action worker
    actions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class AutomationQueueItem(Base):
    """
    Durable hand-off to the action worker: "run this rule for this event".

    Created in 'pending' by the matcher with a snapshot of the payload.
    """

    __tablename__ = "automation_queue"
    __table_args__ = (
        Index("idx_auto_queue_status_scheduled", "status", "scheduled_for"),
        Index("idx_auto_queue_org_rule", "organization_id", "rule_id"),
        Index("idx_auto_queue_event", "event_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    rule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("automation_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("automation_event_log.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    payload_snapshot: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), server_default=text("'pending'"), nullable=False
    )  # AutomationQueueStatus
    attempts: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0"), nullable=False
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, default=3, server_default=text("3"), nullable=False
    )
    scheduled_for: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
