from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from asset_exchange.enums import CorrelationState, KeyPattern, PermittedSynchronization


class RegisterAssetManagerRequest(BaseModel):
    qualified_name: str = Field(min_length=1, max_length=512)
    display_name: str | None = None
    description: str | None = None


class UpdateAssetManagerRequest(BaseModel):
    display_name: str | None = None
    description: str | None = None


class AssetManagerIdResponse(BaseModel):
    asset_manager_id: str
    qualified_name: str


class AssetManagerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    asset_manager_id: str
    qualified_name: str
    display_name: str | None = None
    description: str | None = None


class CreateElementRequest(BaseModel):
    type_name: str = Field(min_length=1, max_length=120)
    element_id: str | None = Field(default=None, max_length=64)
    qualified_name: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)


class ElementResponse(BaseModel):
    element_id: str
    type_name: str
    qualified_name: str | None = None
    status: str


class RemoveElementResponse(BaseModel):
    element_id: str
    removed_correlations: int


class CorrelationRequest(BaseModel):
    asset_manager_id: str | None = None
    asset_manager_name: str | None = None
    external_identifier: str | None = None
    external_identifier_name: str | None = None
    external_identifier_usage: str | None = None
    external_identifier_source: str | None = None
    key_pattern: str | None = None
    mapping_properties: dict[str, str] = Field(default_factory=dict)
    permitted_synchronization: str | None = None


class CorrelationIdentityRequest(BaseModel):
    asset_manager_id: str
    asset_manager_name: str | None = None
    external_identifier: str


class ConfirmSynchronizationRequest(CorrelationIdentityRequest):
    synchronized_at: datetime | None = None


class CorrelationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    correlation_id: str
    element_id: str
    asset_manager_id: str | None = None
    asset_manager_name: str | None = None
    external_identifier: str | None = None
    external_identifier_name: str | None = None
    external_identifier_usage: str | None = None
    external_identifier_source: str | None = None
    key_pattern: KeyPattern
    mapping_properties: dict[str, str]
    permitted_synchronization: PermittedSynchronization
    last_synchronized_at: datetime | None = None
    state: CorrelationState


class CorrelationListResponse(BaseModel):
    element_id: str | None = None
    asset_manager_id: str | None = None
    total: int
    items: list[CorrelationResponse]


class ElementIdListResponse(BaseModel):
    asset_manager_id: str
    external_identifier: str
    element_ids: list[str]


class StatusResponse(BaseModel):
    status: str = "ok"


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime


class HealthDetailsResponse(BaseModel):
    status: str
    timestamp: datetime
    database_ok: bool
    asset_managers: int
    active_elements: int
    correlations_by_state: dict[str, int]
    last_activity_at: datetime | None = None


class AuditResponse(BaseModel):
    object_type: str
    object_id: str
    events: list[dict[str, Any]]
