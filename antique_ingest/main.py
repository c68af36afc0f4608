# antique_ingest/main.py
# Serve with: uvicorn --factory antique_ingest.main:create_app
from typing import Optional

from fastapi import FastAPI

from .api.routes import router as api_router
from .config import Settings, load_settings
from .services import ListingStore
from .utils import configure_logging


def create_app(settings: Optional[Settings] = None, store: Optional[ListingStore] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.logging)

    app = FastAPI(title="Antique listings")
    app.state.settings = settings
    app.state.store = store or ListingStore.from_settings(settings.database)
    app.include_router(api_router)

    @app.on_event("startup")
    def on_startup_create_tables():
        app.state.store.initialize()

    @app.on_event("shutdown")
    def on_shutdown_close_store():
        app.state.store.close()

    return app
