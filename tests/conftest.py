import os

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///./test_exchange.db")
os.environ.setdefault("OPERATOR_ID", "test-operator")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from asset_exchange.config import get_settings  # noqa: E402
from asset_exchange.database import get_engine, get_session_factory  # noqa: E402
from asset_exchange.main import create_app  # noqa: E402
from asset_exchange.models.base import Base  # noqa: E402
from asset_exchange.services.registry import CorrelationRegistry  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    get_settings.cache_clear()
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client():
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db_session():
    with get_session_factory()() as db:
        yield db
        db.rollback()


@pytest.fixture()
def registry(db_session):
    return CorrelationRegistry(db_session, actor="test-operator")
