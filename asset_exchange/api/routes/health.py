from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from asset_exchange.database import get_db
from asset_exchange.enums import CorrelationState, ElementStatus
from asset_exchange.models.core import AuditEvent, CorrelationRecord, ExternalAssetManager, MetadataElement
from asset_exchange.schemas import HealthDetailsResponse, HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok", timestamp=datetime.now(UTC))


@router.get("/health/details", response_model=HealthDetailsResponse)
def health_details(db: Session = Depends(get_db)) -> HealthDetailsResponse:
    db.execute(select(1))
    correlations_by_state = {
        state.value: int(
            db.scalar(select(func.count()).select_from(CorrelationRecord).where(CorrelationRecord.state == state)) or 0
        )
        for state in CorrelationState
    }
    asset_managers = int(db.scalar(select(func.count()).select_from(ExternalAssetManager)) or 0)
    active_elements = int(
        db.scalar(
            select(func.count()).select_from(MetadataElement).where(MetadataElement.status == ElementStatus.active)
        )
        or 0
    )
    last_activity = db.scalar(select(func.max(AuditEvent.timestamp)).where(AuditEvent.object_type == "correlation"))
    return HealthDetailsResponse(
        status="ok",
        timestamp=datetime.now(UTC),
        database_ok=True,
        asset_managers=asset_managers,
        active_elements=active_elements,
        correlations_by_state=correlations_by_state,
        last_activity_at=last_activity,
    )
