from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_exchange.models.core import AuditEvent
from asset_exchange.services.utils import now_utc, to_json_safe


def emit_audit_event(
    db: Session,
    *,
    actor: str,
    action: str,
    object_type: str,
    object_id: str,
    trace_id: str,
    previous_state: str | None = None,
    new_state: str | None = None,
    metadata_blob: dict | None = None,
) -> AuditEvent:
    event = AuditEvent(
        actor=actor,
        action=action,
        object_type=object_type,
        object_id=object_id,
        trace_id=trace_id,
        previous_state=previous_state,
        new_state=new_state,
        timestamp=now_utc(),
        metadata_blob=to_json_safe(metadata_blob or {}),
    )
    db.add(event)
    db.flush()
    return event


def get_audit_events(db: Session, object_type: str, object_id: str) -> list[dict[str, Any]]:
    stmt = (
        select(AuditEvent)
        .where(AuditEvent.object_type == object_type, AuditEvent.object_id == object_id)
        .order_by(AuditEvent.timestamp.asc())
    )
    rows = list(db.scalars(stmt))
    return [{column.name: getattr(row, column.name) for column in row.__table__.columns} for row in rows]
