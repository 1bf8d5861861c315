import pytest
from pydantic import ValidationError

from asset_exchange.config import Settings
from asset_exchange.enums import PermittedSynchronization


def test_settings_normalise_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    settings = Settings()
    assert settings.log_level == "WARNING"
    assert settings.default_permitted_synchronization == PermittedSynchronization.both_directions


def test_settings_reject_unknown_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_require_operator(monkeypatch):
    monkeypatch.setenv("OPERATOR_ID", "  ")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_parse_permitted_synchronization(monkeypatch):
    monkeypatch.setenv("DEFAULT_PERMITTED_SYNCHRONIZATION", "FROM_THIRD_PARTY")
    assert Settings().default_permitted_synchronization == PermittedSynchronization.from_third_party
