from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from asset_exchange.database import get_db
from asset_exchange.schemas import AuditResponse
from asset_exchange.services.audit import get_audit_events

router = APIRouter(prefix="/api/v1/audit", tags=["audit"])

AUDITED_OBJECT_TYPES = {"asset_manager", "correlation", "element"}


@router.get("/{object_type}/{object_id}", response_model=AuditResponse)
def fetch_audit(object_type: str, object_id: str, db: Session = Depends(get_db)) -> AuditResponse:
    if object_type not in AUDITED_OBJECT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported object type: {object_type}")
    events = get_audit_events(db, object_type, object_id)
    return AuditResponse(object_type=object_type, object_id=object_id, events=events)
