"""SiteProof FastAPI application entrypoint."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from siteproof.config import settings
from siteproof.errors import setup_exception_handlers

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.siteproof_debug else settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
)
# Quiet down noisy third-party loggers
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)

logger = logging.getLogger("siteproof.requests")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""
    from siteproof.db.session import init_db
    from siteproof.tasks.workers import start_scheduler

    await init_db()
    if settings.scheduler_enabled:
        start_scheduler()

    yield

    from siteproof.db.session import close_db
    from siteproof.tasks.workers import stop_scheduler

    stop_scheduler()
    await close_db()


app = FastAPI(
    title="SiteProof",
    description="Construction quality assurance and commercial management",
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

setup_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s %d %.1fms", request.method, request.url.path, response.status_code, elapsed_ms
    )
    return response


# Register API routes
from siteproof.api.routes import auth, projects, lots, itp, holdpoints  # noqa: E402
from siteproof.api.routes import ncrs, claims, subcontractors, test_results  # noqa: E402
from siteproof.api.routes import notifications, audit_logs, dockets, dashboard  # noqa: E402

app.include_router(auth.router, prefix="/api", tags=["Auth"])
app.include_router(projects.router, prefix="/api", tags=["Projects"])
app.include_router(lots.router, prefix="/api", tags=["Lots"])
app.include_router(itp.router, prefix="/api", tags=["ITP"])
app.include_router(holdpoints.router, prefix="/api", tags=["Hold Points"])
app.include_router(test_results.router, prefix="/api", tags=["Test Results"])
app.include_router(ncrs.router, prefix="/api", tags=["NCRs"])
app.include_router(claims.router, prefix="/api", tags=["Claims"])
app.include_router(subcontractors.router, prefix="/api", tags=["Subcontractors"])
app.include_router(dockets.router, prefix="/api", tags=["Dockets"])
app.include_router(dashboard.router, prefix="/api", tags=["Dashboard"])
app.include_router(notifications.router, prefix="/api", tags=["Notifications"])
app.include_router(audit_logs.router, prefix="/api", tags=["Audit Log"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "0.1.0", "env": settings.siteproof_env}
