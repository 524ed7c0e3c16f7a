import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.application import configure_record_repository
from backend.core.logging import configure_logging
from backend.routes import file_entries, pending_updates, users

logger = logging.getLogger(__name__)


def _configure_store() -> None:
    store = os.getenv("RECORDS_STORE", "memory").strip().lower()
    if store == "firestore":
        from backend.infrastructure.firestore import FirestoreRecordRepository

        configure_record_repository(FirestoreRecordRepository.from_environment())
        logger.info("Using the Firestore record store")
    elif store != "memory":
        raise ValueError(f"unsupported RECORDS_STORE '{store}' (expected 'memory' or 'firestore')")


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="GWD Records API", version="0.1.0")

    _configure_store()

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(pending_updates.router, prefix="/api")
    app.include_router(file_entries.router, prefix="/api")
    app.include_router(users.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "GWD Records API",
                "docs": "/docs",
                "health": "/api/pending-updates/actionable",
            }
        )

    return app


app = create_app()
