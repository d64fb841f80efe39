"""
AutoJob API.

Startup builds the automation engine (counters, token manager, orchestrator,
scheduler) once and re-registers triggers for every active job. Routers
reach the engine through ``app.state.automation``.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from autojob.api import automation, job_board_auth
from autojob.config import settings
from autojob.database import engine, session_factory
from autojob.services.automation import build_automation_service
from autojob.services.counters import create_counter_store

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_host = settings.database_url.split('@')[1] if '@' in settings.database_url else 'local'
    logger.info(f"🚀 AutoJob engine starting (database: {db_host}, timezone: {settings.scheduler_timezone})")

    counter_store = create_counter_store(settings.redis_url)
    service = build_automation_service(settings, session_factory, counter_store)
    app.state.automation = service
    restored = await service.restore_active_jobs()
    logger.info(f"⏰ Scheduler running with {restored} active job(s)")

    try:
        yield
    finally:
        logger.info("👋 Stopping scheduler and waiting for in-flight runs...")
        await service.shutdown()
        await counter_store.close()
        await engine.dispose()


app = FastAPI(
    title="AutoJob API",
    description="Scheduled job search and automatic applications",
    version=VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

# Comma-separated extra origins come from ALLOWED_ORIGINS
origins = ["http://localhost:3000"]
origins += [o.strip() for o in settings.allowed_origins.split(',') if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(automation.router, prefix="/api/automation", tags=["automation"])
app.include_router(job_board_auth.router, prefix="/api/job-board", tags=["job-board"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "AutoJob API", "version": VERSION}
