from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from asset_exchange.api.deps import call_registry, get_registry, http_error
from asset_exchange.database import get_db
from asset_exchange.schemas import (
    ConfirmSynchronizationRequest,
    CorrelationIdentityRequest,
    CorrelationListResponse,
    CorrelationRequest,
    CorrelationResponse,
    CreateElementRequest,
    ElementResponse,
    RemoveElementResponse,
    StatusResponse,
)
from asset_exchange.services.correlation import correlation_properties
from asset_exchange.services.elements import create_element
from asset_exchange.services.errors import ExchangeError, StoreUnavailableError
from asset_exchange.services.registry import CorrelationRegistry

router = APIRouter(prefix="/api/v1/users/{user_id}/elements", tags=["elements"])


@router.post("", response_model=ElementResponse)
def add_element(user_id: str, request: CreateElementRequest, db: Session = Depends(get_db)) -> ElementResponse:
    try:
        element = create_element(
            db,
            actor=user_id,
            type_name=request.type_name,
            element_id=request.element_id,
            qualified_name=request.qualified_name,
            properties=request.properties,
        )
        db.commit()
    except ExchangeError as exc:
        db.rollback()
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise http_error(StoreUnavailableError("Metadata store unavailable during create_element")) from exc
    return ElementResponse(
        element_id=element.element_id,
        type_name=element.type_name,
        qualified_name=element.qualified_name,
        status=element.status.value,
    )


@router.delete("/{element_id}", response_model=RemoveElementResponse)
def remove_element(element_id: str, registry: CorrelationRegistry = Depends(get_registry)) -> RemoveElementResponse:
    removed = call_registry(lambda: registry.remove_element(element_id))
    return RemoveElementResponse(element_id=element_id, removed_correlations=removed)


@router.post("/{element_id}/correlations", response_model=StatusResponse)
def upsert_correlation(
    element_id: str,
    request: CorrelationRequest,
    registry: CorrelationRegistry = Depends(get_registry),
) -> StatusResponse:
    try:
        properties = correlation_properties(
            request.asset_manager_id,
            request.asset_manager_name,
            request.external_identifier,
            request.external_identifier_name,
            request.external_identifier_usage,
            request.external_identifier_source,
            request.key_pattern,
            request.mapping_properties,
            request.permitted_synchronization,
        )
    except ExchangeError as exc:
        raise http_error(exc) from exc
    call_registry(lambda: registry.upsert_correlation(element_id, properties))
    return StatusResponse()


@router.get("/{element_id}/correlations", response_model=CorrelationListResponse)
def list_correlations(
    element_id: str,
    asset_manager_id: str | None = Query(default=None),
    registry: CorrelationRegistry = Depends(get_registry),
) -> CorrelationListResponse:
    views = call_registry(lambda: registry.list_correlations_for_element(element_id, asset_manager_id))
    return CorrelationListResponse(
        element_id=element_id,
        asset_manager_id=asset_manager_id,
        total=len(views),
        items=[CorrelationResponse.model_validate(view) for view in views],
    )


@router.post("/{element_id}/correlations/confirm", response_model=StatusResponse)
def confirm_synchronization(
    element_id: str,
    request: ConfirmSynchronizationRequest,
    registry: CorrelationRegistry = Depends(get_registry),
) -> StatusResponse:
    call_registry(
        lambda: registry.confirm_synchronized(
            element_id,
            request.asset_manager_id,
            request.asset_manager_name,
            request.external_identifier,
            synchronized_at=request.synchronized_at,
        )
    )
    return StatusResponse()


@router.post("/{element_id}/correlations/remove", response_model=StatusResponse)
def remove_correlation(
    element_id: str,
    request: CorrelationIdentityRequest,
    registry: CorrelationRegistry = Depends(get_registry),
) -> StatusResponse:
    call_registry(
        lambda: registry.remove_correlation(element_id, request.asset_manager_id, request.external_identifier)
    )
    return StatusResponse()


@router.get("/{element_id}/correlations/count")
def count_correlations(element_id: str, registry: CorrelationRegistry = Depends(get_registry)) -> dict:
    count = call_registry(lambda: registry.count_correlations(element_id))
    return {"element_id": element_id, "count": count}
