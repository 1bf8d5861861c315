from datetime import datetime

from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_exchange.enums import CorrelationState, ElementStatus, KeyPattern, PermittedSynchronization
from asset_exchange.models.base import ActorMixin, Base, TimestampedMixin, UTCDateTime, prefixed_id


class ExternalAssetManager(Base, TimestampedMixin, ActorMixin):
    __tablename__ = "external_asset_managers"
    __table_args__ = (UniqueConstraint("qualified_name", name="uq_external_asset_managers_qualified_name"),)

    asset_manager_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: prefixed_id("am"))
    qualified_name: Mapped[str] = mapped_column(String(512), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    correlations: Mapped[list["CorrelationRecord"]] = relationship(back_populates="asset_manager")


class MetadataElement(Base, TimestampedMixin, ActorMixin):
    __tablename__ = "metadata_elements"
    __table_args__ = (Index("ix_element_status", "status"),)

    element_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: prefixed_id("elm"))
    type_name: Mapped[str] = mapped_column(String(120), nullable=False)
    qualified_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    properties: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[ElementStatus] = mapped_column(Enum(ElementStatus), default=ElementStatus.active, nullable=False)

    correlations: Mapped[list["CorrelationRecord"]] = relationship(back_populates="element")


class CorrelationRecord(Base, TimestampedMixin, ActorMixin):
    __tablename__ = "correlation_records"
    __table_args__ = (
        Index("ix_correlation_element_scope", "element_id", "asset_manager_id"),
        Index("ix_correlation_scope_identifier", "asset_manager_id", "external_identifier"),
        Index("ix_correlation_state", "state"),
    )

    correlation_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: prefixed_id("cor"))
    element_id: Mapped[str] = mapped_column(ForeignKey("metadata_elements.element_id"), nullable=False)
    asset_manager_id: Mapped[str | None] = mapped_column(
        ForeignKey("external_asset_managers.asset_manager_id"), nullable=True
    )
    asset_manager_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    external_identifier: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    external_identifier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_identifier_usage: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_identifier_source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    key_pattern: Mapped[KeyPattern] = mapped_column(Enum(KeyPattern), default=KeyPattern.local_key, nullable=False)
    mapping_properties: Mapped[dict[str, str]] = mapped_column(JSON, default=dict, nullable=False)
    permitted_synchronization: Mapped[PermittedSynchronization] = mapped_column(
        Enum(PermittedSynchronization), default=PermittedSynchronization.both_directions, nullable=False
    )
    last_synchronized_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    state: Mapped[CorrelationState] = mapped_column(
        Enum(CorrelationState), default=CorrelationState.unscoped, nullable=False
    )
    removed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    element: Mapped["MetadataElement"] = relationship(back_populates="correlations")
    asset_manager: Mapped["ExternalAssetManager"] = relationship(back_populates="correlations")


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_object", "object_type", "object_id"),)

    audit_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: prefixed_id("aud"))
    actor: Mapped[str] = mapped_column(String(120), nullable=False)
    action: Mapped[str] = mapped_column(String(80), nullable=False)
    object_type: Mapped[str] = mapped_column(String(30), nullable=False)
    object_id: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_state: Mapped[str | None] = mapped_column(String(80), nullable=True)
    new_state: Mapped[str | None] = mapped_column(String(80), nullable=True)
    trace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    metadata_blob: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
