from datetime import UTC, datetime, timedelta

from asset_exchange.models.core import MetadataElement
from asset_exchange.services.elements import create_element
from asset_exchange.services.registry import CorrelationRegistry

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


class StepClock:
    """Deterministic clock that moves forward one minute per call."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


def add_element(db, *, element_id: str = "elem-42", type_name: str = "GlossaryTerm") -> MetadataElement:
    element = create_element(db, actor="test-operator", type_name=type_name, element_id=element_id)
    db.commit()
    return element


def register_manager(registry: CorrelationRegistry, qualified_name: str = "acme-catalog") -> str:
    return registry.register_external_asset_manager(qualified_name, display_name="ACME").unwrap()
