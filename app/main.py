"""
Deployment Control Plane - Main FastAPI Application

Drives static-site deployments on Cloudflare Pages and Netlify and redeploys
when GitHub sends a push webhook.

Services:
- Projects API (owner-authenticated)
- GitHub Webhook receiver
- Status refresh scheduler
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncpg
import logging
import os
from alembic import command
from alembic.config import Config as AlembicConfig

from app.config import get_settings
from app.api import projects, webhooks
from app.errors import register_exception_handlers
from app.services.credential_vault import CredentialVault
from app.services.project_state_machine import ProjectStateMachine
from app.services.project_store import PostgresCredentialSource, PostgresProjectStore
from app.services.provider_client import build_provider_registry
from app.services.rate_limiter import WebhookRateLimiter
from app.services.scheduler import DeploymentScheduler
from app.services.webhook_dispatcher import WebhookDispatcher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "alembic.ini")


def run_migrations():
    """Upgrade the schema to head before serving."""
    logger.info("Running database migrations...")

    alembic_cfg = AlembicConfig(ALEMBIC_INI)
    # Keep the application's logging setup
    alembic_cfg.attributes["skip_logging_config"] = True

    try:
        command.upgrade(alembic_cfg, "head")
    except Exception as e:
        logger.error(f"Migration failed: {type(e).__name__}: {e}")
        # Refuse to start with no tables
        raise RuntimeError("Database migration failed") from e

    logger.info("Migrations completed")


async def init_db_pool() -> asyncpg.Pool:
    """Initialize database connection pool."""
    if not settings.DATABASE_URL:
        raise RuntimeError("DATABASE_URL not configured")

    logger.info("Initializing database connection pool...")

    db_pool = await asyncpg.create_pool(
        settings.DATABASE_URL,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        command_timeout=60
    )

    logger.info("Database connection pool ready")
    return db_pool


def wire_services(app: FastAPI, db_pool: asyncpg.Pool) -> None:
    """
    Construct every service once and attach it to app.state.

    One provider client per provider, shared by all requests.
    """
    vault = CredentialVault(settings.ENCRYPTION_KEY)
    store = PostgresProjectStore(db_pool)
    credentials = PostgresCredentialSource(db_pool, vault)
    providers = build_provider_registry(settings)
    state_machine = ProjectStateMachine(store, providers, credentials)

    app.state.project_store = store
    app.state.state_machine = state_machine
    app.state.webhook_dispatcher = WebhookDispatcher(store, state_machine)
    app.state.rate_limiter = WebhookRateLimiter(
        settings.REDIS_URL,
        capacity=settings.WEBHOOK_RATE_LIMIT,
        window_seconds=settings.WEBHOOK_RATE_WINDOW,
    )
    app.state.scheduler = DeploymentScheduler(store, state_machine)


# --- FastAPI Lifespan ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Handles startup and shutdown tasks.
    """
    # Startup
    logger.info(f"Deployment control plane starting (ENV={settings.ENV})...")

    if settings.RUN_MIGRATIONS:
        run_migrations()

    db_pool = await init_db_pool()
    wire_services(app, db_pool)
    app.state.scheduler.start()

    yield

    # Shutdown
    logger.info("Deployment control plane shutting down...")

    app.state.scheduler.shutdown()
    await app.state.rate_limiter.close()

    logger.info("Closing database connection pool...")
    await db_pool.close()


# --- FastAPI App ---

app = FastAPI(
    title="Deployment Control Plane",
    description="Static-site deployments on Cloudflare Pages and Netlify with GitHub push redeploys",
    version="1.0.0",
    lifespan=lifespan
)

register_exception_handlers(app)


# --- CORS Middleware ---

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Health Check ---

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "deploy-control-plane",
        "version": "1.0.0",
        "env": settings.ENV,
    }


@app.get("/")
async def root():
    """Root endpoint with service information."""
    return {
        "service": "Deployment Control Plane",
        "version": "1.0.0",
        "env": settings.ENV,
        "endpoints": {
            "health": "/health",
            "projects": "/projects",
            "github_webhook": "/webhook/github",
        }
    }


# --- API Routers ---

app.include_router(projects.router)
app.include_router(webhooks.router)


# --- Development Server ---

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8080,
        reload=(settings.ENV == "development"),
        log_level="info"
    )
