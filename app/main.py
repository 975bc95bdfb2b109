import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.auth.router import router as auth_router
from app.api.v1.enrollments.router import router as enrollments_router
from app.api.v1.registration_tokens.router import router as registration_tokens_router
from app.api.v1.temp_credentials.router import router as temp_credentials_router
from app.core.config import settings
from app.core.logging_config import setup_logging
from app.db import session as db_session

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # Tests may have initialised the engine already
    if db_session.AsyncSessionLocal is None:
        db_session.init_engine(settings.database_url)
    logger.info("Enrollment backend started")
    yield
    await db_session.dispose_engine()
    logger.info("Enrollment backend stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Ward Enrollment Backend", lifespan=lifespan)

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(enrollments_router)
    app.include_router(registration_tokens_router)
    app.include_router(temp_credentials_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
