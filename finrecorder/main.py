"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from finrecorder.config import settings
from finrecorder.database import create_db_and_tables
from finrecorder.errors import NotFoundError
from finrecorder.utils.logging import setup_logging
from finrecorder.api import (
    admin,
    analytics,
    auth,
    cron,
    holdings,
    portfolio,
    settings as settings_api,
    system,
    transactions,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    create_db_and_tables()

    from finrecorder.engine.scheduler import start_scheduler, stop_scheduler
    if settings.scheduler_enabled:
        start_scheduler()

    yield

    stop_scheduler()


app = FastAPI(
    title="FinRecorder",
    description="TW/US stock portfolio ledger with performance analytics",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# Mount routers
app.include_router(auth.router)
app.include_router(transactions.router)
app.include_router(portfolio.router)
app.include_router(holdings.router)
app.include_router(analytics.router)
app.include_router(settings_api.router)
app.include_router(cron.router)
app.include_router(admin.router)
app.include_router(system.router)
