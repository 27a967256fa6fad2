"""Pydantic schemas for the internal automation endpoints."""

from uuid import UUID

from pydantic import BaseModel, Field

from orgops.db.enums import AutomationSourceType


class EmitEventRequest(BaseModel):
    """Event submitted by a trusted producer."""
    organization_id: UUID
    event_name: str = Field(min_length=1, max_length=100)
    payload: dict = {}
    source_type: AutomationSourceType = AutomationSourceType.API
    source_id: str | None = Field(default=None, max_length=255)


class EmitEventResponse(BaseModel):
    """Counts for one emitted event (partial success is still 200)."""
    event_id: UUID
    event_name: str
    rules_matched: int
    rules_queued: int
    errors: list[str]
    errors_total: int


class WorkItemScanResponse(BaseModel):
    orgs_processed: int
    candidates: int
    created: int
    errors: list[str]
    errors_total: int
