from datetime import UTC, datetime
from enum import Enum
from typing import Any


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    compact = value.strip()
    return compact or None


def to_json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_json_safe(nested) for key, nested in value.items()}
    if isinstance(value, list):
        return [to_json_safe(nested) for nested in value]
    return value
