"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from orgops.db.base import Base
from orgops.db.types import JSONType


class WorkItem(Base):
    """
    Staff-facing alert or task materialized by periodic scanners.

    (organization_id, dedupe_key) is unique; scanners insert-or-ignore on it,
    so re-running a scan never duplicates an item or touches its status.
    """

    __tablename__ = "work_items"
    __table_args__ = (
        UniqueConstraint("organization_id", "dedupe_key", name="uq_work_items_org_dedupe"),
        Index("idx_work_items_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False)

    item_type: Mapped[str] = mapped_column(
        String(20), server_default=text("'task'"), nullable=False
    )  # WorkItemType
    module: Mapped[str | None] = mapped_column(String(50), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(
        String(20), server_default=text("'normal'"), nullable=False
    )  # WorkItemPriority
    status: Mapped[str] = mapped_column(
        String(20), server_default=text("'open'"), nullable=False
    )  # WorkItemStatus
    due_at: Mapped[datetime | None] = mapped_column(nullable=True)
    snoozed_until: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Source entity
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # UI affordances, e.g. {"primary": {"label": ..., "href": ...}}
    actions: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
