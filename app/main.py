"""Studio calendar sync service."""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.calendar.tokens import RefreshLockRegistry
from app.core.config import settings
from app.core.database import create_db_and_tables
from app.core.scheduler import shutdown_scheduler, start_scheduler
from app.routes import microsoft365, sync
from app.routes.errors import register_error_handlers

# Configure logging
log_dir = Path(settings.log_dir).expanduser()
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / "latest.log"

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    filename=str(log_file),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    logger.info("Starting calendar sync service")
    create_db_and_tables()
    app.state.http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.refresh_locks = RefreshLockRegistry()
    start_scheduler(app.state.http_client, app.state.refresh_locks)
    yield
    shutdown_scheduler()
    await app.state.http_client.aclose()
    logger.info("Calendar sync service shut down")


app = FastAPI(
    title=settings.app_name,
    description="Connects back office users to Microsoft 365 and keeps their agenda in sync with Outlook",
    version="0.1.0",
    lifespan=lifespan,
)

origins = (
    ["*"]
    if settings.allowed_origins == "*"
    else [o.strip() for o in settings.allowed_origins.split(",")]
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(microsoft365.router)
app.include_router(sync.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "app": settings.app_name}
