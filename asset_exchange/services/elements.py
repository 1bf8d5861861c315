from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_exchange.enums import ElementStatus
from asset_exchange.models.core import MetadataElement
from asset_exchange.services.errors import ConflictError, NotFoundError, require_text
from asset_exchange.services.utils import blank_to_none


def create_element(
    db: Session,
    *,
    actor: str,
    type_name: str,
    element_id: str | None = None,
    qualified_name: str | None = None,
    properties: dict | None = None,
) -> MetadataElement:
    type_name = require_text(type_name, "type_name")
    element_id = blank_to_none(element_id)
    if element_id is not None and db.get(MetadataElement, element_id) is not None:
        raise ConflictError(f"Metadata element already exists: {element_id}")
    element = MetadataElement(
        type_name=type_name,
        qualified_name=blank_to_none(qualified_name),
        properties=properties or {},
        status=ElementStatus.active,
        created_by=actor,
        updated_by=actor,
    )
    if element_id is not None:
        element.element_id = element_id
    db.add(element)
    db.flush()
    return element


def get_active_element(db: Session, element_id: str, *, lock: bool = False) -> MetadataElement:
    element_id = require_text(element_id, "element_id")
    stmt = select(MetadataElement).where(
        MetadataElement.element_id == element_id,
        MetadataElement.status == ElementStatus.active,
    )
    if lock:
        stmt = stmt.with_for_update()
    element = db.scalar(stmt)
    if element is None:
        raise NotFoundError(f"Metadata element not found: {element_id}")
    return element


def mark_element_deleted(element: MetadataElement, *, actor: str) -> None:
    element.status = ElementStatus.deleted
    element.updated_by = actor
