from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from asset_exchange.enums import CorrelationState, ElementStatus, PermittedSynchronization
from asset_exchange.models.core import CorrelationRecord, ExternalAssetManager, MetadataElement
from asset_exchange.services.audit import emit_audit_event
from asset_exchange.services.correlation import CorrelationProperties, CorrelationView, revalidate
from asset_exchange.services.elements import get_active_element, mark_element_deleted
from asset_exchange.services.errors import (
    ConflictError,
    NotFoundError,
    Outcome,
    StoreUnavailableError,
    capture,
    require_text,
)
from asset_exchange.services.utils import as_utc, blank_to_none, now_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_STATES = (CorrelationState.unscoped, CorrelationState.scoped, CorrelationState.synchronized)


@dataclass(frozen=True)
class CorrelationEvent:
    action: str
    element_id: str
    asset_manager_id: str | None
    external_identifier: str | None
    actor: str
    occurred_at: datetime


@dataclass(frozen=True)
class AssetManagerView:
    asset_manager_id: str
    qualified_name: str
    display_name: str | None
    description: str | None

    @classmethod
    def from_record(cls, record: ExternalAssetManager) -> AssetManagerView:
        return cls(
            asset_manager_id=record.asset_manager_id,
            qualified_name=record.qualified_name,
            display_name=record.display_name,
            description=record.description,
        )


Notifier = Callable[[CorrelationEvent], None]


class CorrelationRegistry:
    """Owns the mapping between metadata elements and external identifiers.

    Each public call is one unit of work against the session: it commits when
    it succeeds and rolls back when it fails. Caller-correctable failures come
    back inside an ``Outcome``; a failing store raises ``StoreUnavailableError``.
    """

    def __init__(
        self,
        db: Session,
        *,
        actor: str,
        clock: Callable[[], datetime] = now_utc,
        notifier: Notifier | None = None,
        default_permitted_synchronization: PermittedSynchronization = PermittedSynchronization.both_directions,
    ) -> None:
        self.db = db
        self.actor = require_text(actor, "actor")
        self.clock = clock
        self.notifier = notifier
        self.default_permitted_synchronization = default_permitted_synchronization
        self._pending_events: list[CorrelationEvent] = []

    # external asset managers

    def register_external_asset_manager(
        self,
        qualified_name: str,
        display_name: str | None = None,
        description: str | None = None,
    ) -> Outcome[str]:
        def operation() -> str:
            name = require_text(qualified_name, "qualified_name")
            if self._find_asset_manager(name) is not None:
                raise ConflictError(f"External asset manager already registered: {name}")
            manager = ExternalAssetManager(
                qualified_name=name,
                display_name=display_name,
                description=description,
                created_by=self.actor,
                updated_by=self.actor,
            )
            self.db.add(manager)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise ConflictError(f"External asset manager already registered: {name}") from exc
            emit_audit_event(
                self.db,
                actor=self.actor,
                action="asset_manager_registered",
                object_type="asset_manager",
                object_id=manager.asset_manager_id,
                trace_id=f"asset-manager-register:{name}",
                new_state="registered",
                metadata_blob={"qualified_name": name},
            )
            logger.info("Registered external asset manager %s as %s", name, manager.asset_manager_id)
            return manager.asset_manager_id

        return self._execute("register_external_asset_manager", operation)

    def resolve_external_asset_manager_identifier(self, qualified_name: str) -> Outcome[str]:
        def operation() -> str:
            name = require_text(qualified_name, "qualified_name")
            manager = self._find_asset_manager(name)
            if manager is None:
                raise NotFoundError(f"External asset manager not found: {name}")
            return manager.asset_manager_id

        return self._execute("resolve_external_asset_manager_identifier", operation, mutating=False)

    def get_external_asset_manager(self, asset_manager_id: str) -> Outcome[AssetManagerView]:
        return self._execute(
            "get_external_asset_manager",
            lambda: AssetManagerView.from_record(self._get_asset_manager(asset_manager_id)),
            mutating=False,
        )

    def update_external_asset_manager(
        self,
        asset_manager_id: str,
        *,
        display_name: str | None = None,
        description: str | None = None,
    ) -> Outcome[AssetManagerView]:
        def operation() -> AssetManagerView:
            manager = self._get_asset_manager(asset_manager_id)
            if display_name is not None:
                manager.display_name = display_name
            if description is not None:
                manager.description = description
            manager.updated_by = self.actor
            self.db.flush()
            emit_audit_event(
                self.db,
                actor=self.actor,
                action="asset_manager_updated",
                object_type="asset_manager",
                object_id=manager.asset_manager_id,
                trace_id=f"asset-manager-update:{manager.asset_manager_id}",
                metadata_blob={"display_name": display_name, "description": description},
            )
            return AssetManagerView.from_record(manager)

        return self._execute("update_external_asset_manager", operation)

    # correlations

    def upsert_correlation(self, element_id: str, properties: CorrelationProperties) -> Outcome[None]:
        def operation() -> None:
            checked = revalidate(properties)
            element = get_active_element(self.db, element_id, lock=True)
            if checked.scoped:
                self._upsert_scoped(element, checked)
            else:
                self._ensure_unscoped(element)

        return self._execute("upsert_correlation", operation)

    def confirm_synchronized(
        self,
        element_id: str,
        asset_manager_id: str,
        asset_manager_name: str | None,
        external_identifier: str,
        synchronized_at: datetime | None = None,
    ) -> Outcome[None]:
        def operation() -> None:
            identifier = require_text(external_identifier, "external_identifier")
            scope = require_text(asset_manager_id, "asset_manager_id")
            element = get_active_element(self.db, element_id, lock=True)
            record = self._get_active_correlation(element.element_id, scope, identifier)

            confirmed_at = as_utc(synchronized_at) if synchronized_at is not None else as_utc(self.clock())
            previous_state = record.state
            # The max() is applied by the database so a confirmation committed
            # by another session is never overwritten by an older one.
            result = self.db.execute(
                update(CorrelationRecord)
                .where(
                    CorrelationRecord.correlation_id == record.correlation_id,
                    CorrelationRecord.state.in_(ACTIVE_STATES),
                    or_(
                        CorrelationRecord.last_synchronized_at.is_(None),
                        CorrelationRecord.last_synchronized_at < confirmed_at,
                    ),
                )
                .values(
                    last_synchronized_at=confirmed_at,
                    state=CorrelationState.synchronized,
                    updated_by=self.actor,
                    updated_at=func.now(),
                )
                .execution_options(synchronize_session=False)
            )
            self.db.refresh(record)
            if result.rowcount == 0:
                if record.state == CorrelationState.removed:
                    raise NotFoundError(
                        f"No correlation for external identifier {identifier} "
                        f"in asset manager {scope} on element {element.element_id}"
                    )
                current = record.last_synchronized_at
                logger.warning(
                    "Ignored stale synchronization of %s in %s for %s: %s is not after %s",
                    identifier,
                    scope,
                    element.element_id,
                    confirmed_at.isoformat(),
                    current.isoformat() if current else None,
                )
                return

            self._record_change(
                record,
                action="correlation_confirmed",
                previous_state=previous_state,
                metadata_blob={"asset_manager_name": asset_manager_name, "synchronized_at": confirmed_at},
            )

        return self._execute("confirm_synchronized", operation)

    def list_correlations_for_element(
        self,
        element_id: str,
        asset_manager_id: str | None = None,
    ) -> Outcome[list[CorrelationView]]:
        def operation() -> list[CorrelationView]:
            stmt = select(CorrelationRecord).where(
                CorrelationRecord.element_id == require_text(element_id, "element_id"),
                CorrelationRecord.state.in_(ACTIVE_STATES),
            )
            scope = blank_to_none(asset_manager_id)
            if scope is not None:
                stmt = stmt.where(CorrelationRecord.asset_manager_id == scope)
            stmt = stmt.order_by(CorrelationRecord.created_at.asc(), CorrelationRecord.correlation_id.asc())
            return [CorrelationView.from_record(record) for record in self.db.scalars(stmt)]

        return self._execute("list_correlations_for_element", operation, mutating=False)

    def list_correlations_for_scope(self, asset_manager_id: str) -> Outcome[list[CorrelationView]]:
        def operation() -> list[CorrelationView]:
            manager = self._get_asset_manager(asset_manager_id)
            stmt = (
                select(CorrelationRecord)
                .where(
                    CorrelationRecord.asset_manager_id == manager.asset_manager_id,
                    CorrelationRecord.state.in_(ACTIVE_STATES),
                )
                .order_by(CorrelationRecord.created_at.asc(), CorrelationRecord.correlation_id.asc())
            )
            return [CorrelationView.from_record(record) for record in self.db.scalars(stmt)]

        return self._execute("list_correlations_for_scope", operation, mutating=False)

    def count_correlations(self, element_id: str) -> Outcome[int]:
        def operation() -> int:
            stmt = (
                select(func.count())
                .select_from(CorrelationRecord)
                .where(
                    CorrelationRecord.element_id == require_text(element_id, "element_id"),
                    CorrelationRecord.state.in_(ACTIVE_STATES),
                )
            )
            return int(self.db.scalar(stmt) or 0)

        return self._execute("count_correlations", operation, mutating=False)

    def get_elements_for_external_identifier(
        self,
        asset_manager_id: str,
        external_identifier: str,
    ) -> Outcome[list[str]]:
        def operation() -> list[str]:
            scope = require_text(asset_manager_id, "asset_manager_id")
            identifier = require_text(external_identifier, "external_identifier")
            stmt = (
                select(CorrelationRecord.element_id)
                .join(MetadataElement, MetadataElement.element_id == CorrelationRecord.element_id)
                .where(
                    CorrelationRecord.asset_manager_id == scope,
                    CorrelationRecord.external_identifier == identifier,
                    CorrelationRecord.state.in_(ACTIVE_STATES),
                    MetadataElement.status == ElementStatus.active,
                )
                .distinct()
                .order_by(CorrelationRecord.element_id.asc())
            )
            return list(self.db.scalars(stmt))

        return self._execute("get_elements_for_external_identifier", operation, mutating=False)

    def remove_correlation(
        self,
        element_id: str,
        asset_manager_id: str,
        external_identifier: str,
    ) -> Outcome[None]:
        def operation() -> None:
            identifier = require_text(external_identifier, "external_identifier")
            scope = require_text(asset_manager_id, "asset_manager_id")
            element = get_active_element(self.db, element_id, lock=True)
            record = self._get_active_correlation(element.element_id, scope, identifier)
            self._remove(record, reason="unlinked")

        return self._execute("remove_correlation", operation)

    def remove_element(self, element_id: str) -> Outcome[int]:
        def operation() -> int:
            element = get_active_element(self.db, element_id, lock=True)
            records = list(
                self.db.scalars(
                    select(CorrelationRecord).where(
                        CorrelationRecord.element_id == element.element_id,
                        CorrelationRecord.state.in_(ACTIVE_STATES),
                    )
                )
            )
            for record in records:
                self._remove(record, reason="element_removed")
            mark_element_deleted(element, actor=self.actor)
            self.db.flush()
            emit_audit_event(
                self.db,
                actor=self.actor,
                action="element_removed",
                object_type="element",
                object_id=element.element_id,
                trace_id=f"element-remove:{element.element_id}",
                previous_state=ElementStatus.active.value,
                new_state=ElementStatus.deleted.value,
                metadata_blob={"removed_correlations": len(records)},
            )
            logger.info("Removed element %s and %d correlation(s)", element.element_id, len(records))
            return len(records)

        return self._execute("remove_element", operation)

    # internals

    def _execute(self, operation_name: str, operation: Callable[[], T], *, mutating: bool = True) -> Outcome[T]:
        self._pending_events = []
        try:
            outcome = capture(operation)
            if not outcome.ok:
                self.db.rollback()
            elif mutating:
                self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Metadata store failure during %s: %s", operation_name, exc)
            raise StoreUnavailableError(f"Metadata store unavailable during {operation_name}") from exc

        if outcome.ok:
            self._deliver_events()
        else:
            logger.info("%s rejected (%s): %s", operation_name, outcome.error.kind.value, outcome.error)
        return outcome

    def _deliver_events(self) -> None:
        events, self._pending_events = self._pending_events, []
        if self.notifier is None:
            return
        for event in events:
            try:
                self.notifier(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Correlation notifier failed for %s on %s: %s", event.action, event.element_id, exc)

    def _find_asset_manager(self, qualified_name: str) -> ExternalAssetManager | None:
        return self.db.scalar(select(ExternalAssetManager).where(ExternalAssetManager.qualified_name == qualified_name))

    def _get_asset_manager(self, asset_manager_id: str) -> ExternalAssetManager:
        scope = require_text(asset_manager_id, "asset_manager_id")
        manager = self.db.get(ExternalAssetManager, scope)
        if manager is None:
            raise NotFoundError(f"External asset manager not found: {scope}")
        return manager

    def _active_for_scope(self, element_id: str, asset_manager_id: str | None) -> CorrelationRecord | None:
        stmt = select(CorrelationRecord).where(
            CorrelationRecord.element_id == element_id,
            CorrelationRecord.state.in_(ACTIVE_STATES),
        )
        if asset_manager_id is None:
            stmt = stmt.where(CorrelationRecord.asset_manager_id.is_(None))
        else:
            stmt = stmt.where(CorrelationRecord.asset_manager_id == asset_manager_id)
        return self.db.scalar(stmt.order_by(CorrelationRecord.created_at.asc()).limit(1))

    def _get_active_correlation(self, element_id: str, asset_manager_id: str, external_identifier: str) -> CorrelationRecord:
        record = self.db.scalar(
            select(CorrelationRecord).where(
                CorrelationRecord.element_id == element_id,
                CorrelationRecord.asset_manager_id == asset_manager_id,
                CorrelationRecord.external_identifier == external_identifier,
                CorrelationRecord.state.in_(ACTIVE_STATES),
            )
        )
        if record is None:
            raise NotFoundError(
                f"No correlation for external identifier {external_identifier} "
                f"in asset manager {asset_manager_id} on element {element_id}"
            )
        return record

    def _ensure_unscoped(self, element: MetadataElement) -> None:
        existing = self.db.scalar(
            select(CorrelationRecord)
            .where(
                CorrelationRecord.element_id == element.element_id,
                CorrelationRecord.state.in_(ACTIVE_STATES),
            )
            .limit(1)
        )
        if existing is not None:
            return
        record = CorrelationRecord(
            element_id=element.element_id,
            state=CorrelationState.unscoped,
            mapping_properties={},
            permitted_synchronization=self.default_permitted_synchronization,
            created_by=self.actor,
            updated_by=self.actor,
        )
        self.db.add(record)
        self.db.flush()
        self._record_change(record, action="correlation_created", previous_state=None)

    def _upsert_scoped(self, element: MetadataElement, properties: CorrelationProperties) -> None:
        manager = self._get_asset_manager(properties.asset_manager_id)  # type: ignore[arg-type]
        record = self._active_for_scope(element.element_id, manager.asset_manager_id)
        if record is None:
            record = self._active_for_scope(element.element_id, None)

        if record is None:
            record = CorrelationRecord(
                element_id=element.element_id,
                state=CorrelationState.scoped,
                created_by=self.actor,
                updated_by=self.actor,
            )
            self.db.add(record)
            action = "correlation_created"
            previous_state = None
        else:
            action = "correlation_updated"
            previous_state = record.state

        if record.external_identifier != properties.external_identifier or record.asset_manager_id is None:
            record.last_synchronized_at = None
            record.state = CorrelationState.scoped

        record.asset_manager_id = manager.asset_manager_id
        record.asset_manager_name = properties.asset_manager_name
        record.external_identifier = properties.external_identifier
        record.external_identifier_name = properties.external_identifier_name
        record.external_identifier_usage = properties.external_identifier_usage
        record.external_identifier_source = properties.external_identifier_source
        record.key_pattern = properties.key_pattern
        record.mapping_properties = dict(properties.mapping_properties)
        record.permitted_synchronization = (
            properties.permitted_synchronization or self.default_permitted_synchronization
        )
        record.updated_by = self.actor
        self.db.flush()
        self._record_change(record, action=action, previous_state=previous_state)

    def _remove(self, record: CorrelationRecord, *, reason: str) -> None:
        previous_state = record.state
        record.state = CorrelationState.removed
        record.removed_at = as_utc(self.clock())
        record.updated_by = self.actor
        self.db.flush()
        self._record_change(
            record,
            action="correlation_removed",
            previous_state=previous_state,
            metadata_blob={"reason": reason},
        )

    def _record_change(
        self,
        record: CorrelationRecord,
        *,
        action: str,
        previous_state: CorrelationState | None,
        metadata_blob: dict | None = None,
    ) -> None:
        emit_audit_event(
            self.db,
            actor=self.actor,
            action=action,
            object_type="correlation",
            object_id=record.correlation_id,
            trace_id=f"{action}:{record.element_id}",
            previous_state=previous_state.value if previous_state else None,
            new_state=record.state.value,
            metadata_blob={
                "element_id": record.element_id,
                "asset_manager_id": record.asset_manager_id,
                "external_identifier": record.external_identifier,
                "key_pattern": record.key_pattern,
                **(metadata_blob or {}),
            },
        )
        logger.debug("%s %s for element %s", action, record.correlation_id, record.element_id)
        self._pending_events.append(
            CorrelationEvent(
                action=action,
                element_id=record.element_id,
                asset_manager_id=record.asset_manager_id,
                external_identifier=record.external_identifier,
                actor=self.actor,
                occurred_at=as_utc(self.clock()),
            )
        )
