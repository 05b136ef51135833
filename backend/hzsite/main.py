"""hz-site API - session and identity backend for the marketing site."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hzsite.config import get_settings
from hzsite.errors import register_exception_handlers

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: create tables and seed the admin allowlist
    from hzsite.database import Base, engine, get_db_context
    from hzsite.services.admin_grants import seed_admin_grant

    # Import all models so they're registered with Base
    from hzsite import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    with get_db_context() as db:
        seed_admin_grant(db, settings.admin_email)

    logger.info(f"{settings.app_name} started")
    yield


app = FastAPI(
    title=settings.app_name,
    description="Sessions, logins and admin authorization",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend (cookies need credentials)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}


# Import and include routers
from hzsite.api import admin, auth  # noqa: E402

app.include_router(auth.router, prefix="/api")
app.include_router(admin.router, prefix="/api")
