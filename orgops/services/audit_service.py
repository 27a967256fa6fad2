"""Audit logging service - best-effort record of committed mutations.

Guidelines:
- Call record() only after the mutation it describes has committed
- NEVER log secrets; emails in metadata are hashed
- A failed audit write is logged and dropped; it never fails the caller
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from orgops.core.structured_logging import build_log_context
from orgops.db.enums import AuditAction
from orgops.db.models import AuditLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
SCHEDULER_ACTOR = "system:scheduler"


def user_actor(user_id: UUID | str) -> str:
    return f"user:{user_id}"


def hash_email(email: str) -> str:
    """Hash email for audit log (prefix + SHA256 suffix for debugging)."""
    if not email:
        return ""
    prefix = email.split("@")[0][:3] if "@" in email else email[:3]
    suffix = hashlib.sha256(email.lower().encode()).hexdigest()[:12]
    return f"{prefix}...@[hash:{suffix}]"


def redact_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Hash email values (by key name) and coerce everything to JSON types."""
    if metadata is None:
        return None

    def _redact(value: Any, key: str = "") -> Any:
        if isinstance(value, Mapping):
            return {str(k): _redact(v, str(k)) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_redact(v, key) for v in value]
        if isinstance(value, str) and "email" in key.lower():
            return hash_email(value)
        return value

    return json.loads(json.dumps(_redact(metadata), default=str))


@dataclass(frozen=True)
class AuditEntry:
    organization_id: UUID
    action: AuditAction
    entity_type: str
    entity_id: UUID | str | None = None
    actor: str | None = None
    metadata: Mapping[str, Any] | None = None


def record(db: Session, entry: AuditEntry) -> None:
    """
    Append an audit entry. Fire-and-forget.

    Any failure is rolled back and logged; the caller's (already committed)
    operation is never affected.
    """
    try:
        with db.begin_nested():
            db.add(
                AuditLog(
                    organization_id=entry.organization_id,
                    actor=entry.actor,
                    action=entry.action.value,
                    entity_type=entry.entity_type,
                    entity_id=str(entry.entity_id) if entry.entity_id is not None else None,
                    metadata_=redact_metadata(entry.metadata),
                )
            )
            db.flush()
        db.commit()
    except Exception:
        # Best effort - don't fail the primary operation on audit errors
        db.rollback()
        logger.exception(
            f"Failed to write audit entry {getattr(entry.action, 'value', entry.action)} "
            f"{entry.entity_type}",
            extra=build_log_context(org_id=entry.organization_id),
        )


def list_entries(
    db: Session,
    org_id: UUID,
    entity_type: str | None = None,
    entity_id: UUID | str | None = None,
    limit: int = 50,
) -> list[AuditLog]:
    """List audit entries for an org, newest first."""
    query = db.query(AuditLog).filter(AuditLog.organization_id == org_id)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == str(entity_id))
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id).limit(limit).all()
