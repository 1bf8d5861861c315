"""Correlation properties: the scoped link between a metadata element and an
identifier held for it by an external asset manager.

An external identifier only means something inside the scope of the asset
manager that issued it, so properties are never built with an identifier and
no scope. Building properties touches neither the network nor the database.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime

from asset_exchange.enums import CorrelationState, KeyPattern, PermittedSynchronization
from asset_exchange.models.core import CorrelationRecord
from asset_exchange.services.errors import Outcome, ValidationError, capture, require
from asset_exchange.services.utils import blank_to_none


@dataclass(frozen=True)
class CorrelationProperties:
    asset_manager_id: str | None = None
    asset_manager_name: str | None = None
    external_identifier: str | None = None
    external_identifier_name: str | None = None
    external_identifier_usage: str | None = None
    external_identifier_source: str | None = None
    key_pattern: KeyPattern | None = None
    mapping_properties: dict[str, str] = field(default_factory=dict)
    permitted_synchronization: PermittedSynchronization | None = None

    @property
    def scoped(self) -> bool:
        return self.asset_manager_id is not None


@dataclass(frozen=True)
class CorrelationView:
    correlation_id: str
    element_id: str
    asset_manager_id: str | None
    asset_manager_name: str | None
    external_identifier: str | None
    external_identifier_name: str | None
    external_identifier_usage: str | None
    external_identifier_source: str | None
    key_pattern: KeyPattern
    mapping_properties: dict[str, str]
    permitted_synchronization: PermittedSynchronization
    last_synchronized_at: datetime | None
    state: CorrelationState

    @classmethod
    def from_record(cls, record: CorrelationRecord) -> CorrelationView:
        values = {item.name: getattr(record, item.name) for item in fields(cls)}
        values["mapping_properties"] = dict(record.mapping_properties or {})
        return cls(**values)


def parse_key_pattern(value: KeyPattern | str | None) -> KeyPattern | None:
    if value is None or isinstance(value, KeyPattern):
        return value
    compact = value.strip().upper()
    if not compact:
        return None
    try:
        return KeyPattern(compact)
    except ValueError as exc:
        raise ValidationError(f"Unsupported key pattern: {value}") from exc


def parse_permitted_synchronization(
    value: PermittedSynchronization | str | None,
) -> PermittedSynchronization | None:
    if value is None or isinstance(value, PermittedSynchronization):
        return value
    compact = value.strip().upper()
    if not compact:
        return None
    try:
        return PermittedSynchronization(compact)
    except ValueError as exc:
        raise ValidationError(f"Unsupported permitted synchronization: {value}") from exc


def _clean_mapping_properties(mapping_properties: Mapping[str, str] | None) -> dict[str, str]:
    if not mapping_properties:
        return {}
    cleaned: dict[str, str] = {}
    for key, value in mapping_properties.items():
        require(isinstance(key, str) and bool(key.strip()), "mapping_properties keys must be non-empty strings")
        require(isinstance(value, str), f"mapping_properties value for {key} must be a string")
        cleaned[key] = value
    return cleaned


def handle_missing_scope(external_identifier: str) -> None:
    raise ValidationError(f"missing scope for external identifier {external_identifier}")


def correlation_properties(
    asset_manager_id: str | None,
    asset_manager_name: str | None = None,
    external_identifier: str | None = None,
    external_identifier_name: str | None = None,
    external_identifier_usage: str | None = None,
    external_identifier_source: str | None = None,
    key_pattern: KeyPattern | str | None = None,
    mapping_properties: Mapping[str, str] | None = None,
    permitted_synchronization: PermittedSynchronization | str | None = None,
) -> CorrelationProperties:
    """Validate the inputs and return the properties; raises ValidationError."""
    scope = blank_to_none(asset_manager_id)
    identifier = blank_to_none(external_identifier)

    if scope is None:
        if identifier is not None:
            handle_missing_scope(identifier)
        return CorrelationProperties()

    if identifier is None:
        raise ValidationError(f"external_identifier is required for asset manager {scope}")

    return CorrelationProperties(
        asset_manager_id=scope,
        asset_manager_name=asset_manager_name,
        external_identifier=identifier,
        external_identifier_name=external_identifier_name,
        external_identifier_usage=external_identifier_usage,
        external_identifier_source=external_identifier_source,
        key_pattern=parse_key_pattern(key_pattern) or KeyPattern.local_key,
        mapping_properties=_clean_mapping_properties(mapping_properties),
        permitted_synchronization=parse_permitted_synchronization(permitted_synchronization),
    )


def build_correlation(
    asset_manager_id: str | None,
    asset_manager_name: str | None = None,
    external_identifier: str | None = None,
    external_identifier_name: str | None = None,
    external_identifier_usage: str | None = None,
    external_identifier_source: str | None = None,
    key_pattern: KeyPattern | str | None = None,
    mapping_properties: Mapping[str, str] | None = None,
    permitted_synchronization: PermittedSynchronization | str | None = None,
) -> Outcome[CorrelationProperties]:
    return capture(
        lambda: correlation_properties(
            asset_manager_id,
            asset_manager_name,
            external_identifier,
            external_identifier_name,
            external_identifier_usage,
            external_identifier_source,
            key_pattern,
            mapping_properties,
            permitted_synchronization,
        )
    )


def revalidate(properties: CorrelationProperties) -> CorrelationProperties:
    return correlation_properties(
        properties.asset_manager_id,
        properties.asset_manager_name,
        properties.external_identifier,
        properties.external_identifier_name,
        properties.external_identifier_usage,
        properties.external_identifier_source,
        properties.key_pattern,
        properties.mapping_properties,
        properties.permitted_synchronization,
    )
