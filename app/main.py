import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import AUTO_CREATE_SCHEMA, CORS_ORIGINS, DATABASE_URL, ENV
from app.core.database import Base, engine
from app.core.logging_setup import configure_logging
from app.core.startup_checks import ensure_migrations_applied, validate_database_environment
from app.middleware.observability import ObservabilityMiddleware
import app.models  # noqa: F401  models must be imported before create_all

from app.routers.conversations import router as conversations_router
from app.routers.orders import router as orders_router
from app.routers.webhook import router as webhook_router

configure_logging()

logger = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


def _startup_tasks() -> None:
    validate_database_environment()
    if AUTO_CREATE_SCHEMA or DATABASE_URL.startswith("sqlite"):
        # Dev and tests; production databases are managed by Alembic
        Base.metadata.create_all(bind=engine)
        logger.info("schema ensured with create_all env=%s", ENV)
        return
    ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        _startup_tasks()
    except Exception:
        logger.exception("startup failed")
        raise
    yield


app = FastAPI(
    title="WhatsApp Commerce Assistant",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

# Routers
app.include_router(webhook_router)
app.include_router(orders_router)
app.include_router(conversations_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
