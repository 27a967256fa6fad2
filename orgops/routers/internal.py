"""
Internal endpoints for trusted producers and scheduled operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions) or backend services.
"""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orgops.core.deps import get_db, verify_internal_secret
from orgops.core.structured_logging import build_log_context
from orgops.db.models import Organization
from orgops.schemas.automation import EmitEventRequest, EmitEventResponse, WorkItemScanResponse
from orgops.services import work_item_scanner
from orgops.services.automation_engine import get_automation_engine
from orgops.services.automation_errors import AutomationStoreError, AutomationValidationError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/automation/events", response_model=EmitEventResponse)
def emit_automation_event(body: EmitEventRequest, db: Session = Depends(get_db)):
    """
    Log an event and queue every matching automation rule.

    Per-rule failures are reported in `errors` with a 200; only an event or
    rule store outage fails the request.
    """
    engine = get_automation_engine(db)
    try:
        result = engine.emit(
            body.organization_id,
            body.event_name,
            body.payload,
            body.source_type,
            body.source_id,
        )
    except AutomationValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except AutomationStoreError:
        logger.exception(
            "Automation event store unavailable",
            extra=build_log_context(org_id=body.organization_id),
        )
        raise HTTPException(status_code=503, detail="Automation store unavailable")

    return EmitEventResponse(
        event_id=result.event_id,
        event_name=result.event_name,
        rules_matched=result.rules_matched,
        rules_queued=result.rules_queued,
        errors=result.errors,
        errors_total=result.errors_total,
    )


@router.post("/scheduled/work-items", response_model=WorkItemScanResponse)
def scan_work_items(org_id: UUID | None = None, db: Session = Depends(get_db)):
    """
    Daily work-item sweep.

    Re-derives renewal, receipt and event-reminder items; safe to re-run.
    Scans one organization when org_id is given, otherwise all of them.
    """
    try:
        if org_id:
            org = db.query(Organization).filter(Organization.id == org_id).first()
            if not org:
                raise HTTPException(status_code=404, detail="Organization not found")
            results = [work_item_scanner.scan_work_items(db, org_id)]
        else:
            results = work_item_scanner.scan_all_organizations(db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Work item scan store unavailable",
            extra=build_log_context(org_id=org_id),
        )
        raise HTTPException(status_code=503, detail="Automation store unavailable")

    total = work_item_scanner.WorkItemScanResult.combine(results)
    return WorkItemScanResponse(
        orgs_processed=len(results),
        candidates=total.candidates,
        created=total.created,
        errors=total.errors,
        errors_total=total.errors_total,
    )
