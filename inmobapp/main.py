import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from inmobapp.config import get_settings
from inmobapp.admin.api import router as api_router
from inmobapp.modules.store import create_store


def create_app(store_factory=None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for store in list(app.state.stores.values()):
            await store.dispose()
        app.state.stores.clear()

    app = FastAPI(
        title="InmobApp",
        description="Inspection and handover workflow for real estate units",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.stores = {}
    app.state.store_factory = store_factory or (lambda: create_store(settings))

    app.include_router(api_router, prefix="/api", tags=["inspection"])

    @app.get("/health")
    async def health():
        return {"status": "ok", "environment": settings.environment, "sessions": len(app.state.stores)}

    return app


app = create_app()
