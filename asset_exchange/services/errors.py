from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from asset_exchange.enums import ErrorKind

T = TypeVar("T")


class ExchangeError(Exception):
    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ExchangeError, ValueError):
    kind = ErrorKind.validation


class NotFoundError(ExchangeError):
    kind = ErrorKind.not_found


class ConflictError(ExchangeError):
    kind = ErrorKind.conflict


class StoreUnavailableError(ExchangeError):
    kind = ErrorKind.store_unavailable


def require(condition: bool, message: str) -> None:
    if not condition:
        raise ValidationError(message)


def require_text(value: str | None, parameter_name: str) -> str:
    require(bool(value and value.strip()), f"{parameter_name} is required")
    return value.strip()  # type: ignore[union-attr]


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a registry call: either a value or the failure that prevented it.

    Only caller-correctable failures (validation, not found, conflict) travel
    inside an Outcome. Store outages are raised.
    """

    value: T | None = None
    error: ExchangeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: ExchangeError) -> Outcome[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def capture(func: Callable[[], T]) -> Outcome[T]:
    try:
        return Outcome.success(func())
    except (ValidationError, NotFoundError, ConflictError) as exc:
        return Outcome.failure(exc)
