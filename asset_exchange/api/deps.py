from collections.abc import Callable
from typing import TypeVar

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from asset_exchange.config import Settings, get_settings
from asset_exchange.database import get_db
from asset_exchange.enums import ErrorKind
from asset_exchange.services.errors import ExchangeError, Outcome, StoreUnavailableError, ValidationError
from asset_exchange.services.registry import CorrelationRegistry

T = TypeVar("T")

STATUS_BY_KIND = {
    ErrorKind.validation: 400,
    ErrorKind.not_found: 404,
    ErrorKind.conflict: 409,
    ErrorKind.store_unavailable: 503,
}


def http_error(error: ExchangeError) -> HTTPException:
    return HTTPException(status_code=STATUS_BY_KIND[error.kind], detail=str(error))


def unwrap_or_raise(outcome: Outcome[T]) -> T:
    if outcome.error is not None:
        raise http_error(outcome.error)
    return outcome.value  # type: ignore[return-value]


def call_registry(call: Callable[[], Outcome[T]]) -> T:
    try:
        outcome = call()
    except StoreUnavailableError as exc:
        raise http_error(exc) from exc
    return unwrap_or_raise(outcome)


def get_registry(
    user_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CorrelationRegistry:
    try:
        return CorrelationRegistry(
            db,
            actor=user_id,
            default_permitted_synchronization=settings.default_permitted_synchronization,
        )
    except ValidationError as exc:
        raise http_error(exc) from exc
