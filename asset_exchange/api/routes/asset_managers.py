from fastapi import APIRouter, Depends, Query

from asset_exchange.api.deps import call_registry, get_registry
from asset_exchange.schemas import (
    AssetManagerIdResponse,
    AssetManagerResponse,
    CorrelationListResponse,
    CorrelationResponse,
    ElementIdListResponse,
    RegisterAssetManagerRequest,
    UpdateAssetManagerRequest,
)
from asset_exchange.services.registry import CorrelationRegistry

router = APIRouter(prefix="/api/v1/users/{user_id}/asset-managers", tags=["asset-managers"])


@router.post("", response_model=AssetManagerIdResponse)
def register_asset_manager(
    request: RegisterAssetManagerRequest,
    registry: CorrelationRegistry = Depends(get_registry),
) -> AssetManagerIdResponse:
    asset_manager_id = call_registry(
        lambda: registry.register_external_asset_manager(
            request.qualified_name,
            display_name=request.display_name,
            description=request.description,
        )
    )
    return AssetManagerIdResponse(asset_manager_id=asset_manager_id, qualified_name=request.qualified_name)


@router.get("/resolve", response_model=AssetManagerIdResponse)
def resolve_asset_manager(
    qualified_name: str = Query(min_length=1),
    registry: CorrelationRegistry = Depends(get_registry),
) -> AssetManagerIdResponse:
    asset_manager_id = call_registry(lambda: registry.resolve_external_asset_manager_identifier(qualified_name))
    return AssetManagerIdResponse(asset_manager_id=asset_manager_id, qualified_name=qualified_name)


@router.get("/{asset_manager_id}", response_model=AssetManagerResponse)
def get_asset_manager(
    asset_manager_id: str,
    registry: CorrelationRegistry = Depends(get_registry),
) -> AssetManagerResponse:
    view = call_registry(lambda: registry.get_external_asset_manager(asset_manager_id))
    return AssetManagerResponse.model_validate(view)


@router.post("/{asset_manager_id}/update", response_model=AssetManagerResponse)
def update_asset_manager(
    asset_manager_id: str,
    request: UpdateAssetManagerRequest,
    registry: CorrelationRegistry = Depends(get_registry),
) -> AssetManagerResponse:
    view = call_registry(
        lambda: registry.update_external_asset_manager(
            asset_manager_id,
            display_name=request.display_name,
            description=request.description,
        )
    )
    return AssetManagerResponse.model_validate(view)


@router.get("/{asset_manager_id}/correlations", response_model=CorrelationListResponse)
def list_scope_correlations(
    asset_manager_id: str,
    registry: CorrelationRegistry = Depends(get_registry),
) -> CorrelationListResponse:
    views = call_registry(lambda: registry.list_correlations_for_scope(asset_manager_id))
    return CorrelationListResponse(
        asset_manager_id=asset_manager_id,
        total=len(views),
        items=[CorrelationResponse.model_validate(view) for view in views],
    )


@router.get("/{asset_manager_id}/external-identifiers/elements", response_model=ElementIdListResponse)
def elements_for_external_identifier(
    asset_manager_id: str,
    external_identifier: str = Query(min_length=1),
    registry: CorrelationRegistry = Depends(get_registry),
) -> ElementIdListResponse:
    element_ids = call_registry(
        lambda: registry.get_elements_for_external_identifier(asset_manager_id, external_identifier)
    )
    return ElementIdListResponse(
        asset_manager_id=asset_manager_id,
        external_identifier=external_identifier,
        element_ids=element_ids,
    )
