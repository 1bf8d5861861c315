from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from sqlalchemy import text

from asset_exchange.api.routes import asset_managers, audit, elements, health
from asset_exchange.config import configure_logging, get_settings
from asset_exchange.database import get_engine, get_session_factory
from asset_exchange.models.base import Base


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    Base.metadata.create_all(bind=get_engine())
    with get_session_factory()() as db:
        db.execute(text("SELECT 1"))
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Asset Exchange Correlation Service",
        version="0.1.0",
        description="Correlates metadata elements with identifiers held by external asset managers.",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(asset_managers.router)
    app.include_router(elements.router)
    app.include_router(audit.router)

    @app.get("/meta")
    def meta() -> dict:
        settings = get_settings()
        return {
            "service": settings.service_name,
            "version": "0.1.0",
            "operator_id": settings.operator_id,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app


app = create_app()
