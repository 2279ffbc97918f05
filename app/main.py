"""
Main FastAPI application for Cognick backend.
Handles CORS, request logging middleware, lifespan events, and router registration.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db, init_db
from app.dependencies.services import get_llm_service
from app.routers import chat, export, flows, health, scraping, works
from app.services.llm_client import LLMServiceError

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup / shutdown helpers
# ---------------------------------------------------------------------------

async def _check_database() -> bool:
    """Initialise DB tables and verify the connection.  Returns True on success."""
    try:
        await init_db()
        logger.info("✓ Database connection OK")
        return True
    except Exception as exc:
        logger.error("✗ Database connection failed: %s", exc)
        raise


async def _check_llm() -> bool:
    """Probe the LLM provider.  Never raises; warnings are logged instead."""
    llm = get_llm_service()
    if not llm.configured:
        logger.warning("⚠ LLM_API_KEY is not set; generation endpoints will return 502")
        return False

    if await llm.check_health():
        logger.info("✓ LLM provider reachable (%s, model %s)", settings.LLM_BASE_URL, settings.LLM_MODEL)
        return True

    logger.warning("⚠ LLM provider at %s is not responding", settings.LLM_BASE_URL)
    return False


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("=" * 60)
    logger.info("  Starting Cognick backend …")
    logger.info("=" * 60)

    # 1 - Database (required; raises on failure)
    await _check_database()

    # 2 - LLM provider (optional; logs warnings but continues)
    await _check_llm()

    logger.info("=" * 60)
    logger.info("  Cognick backend ready on http://%s:%d", settings.HOST, settings.PORT)
    logger.info("  Swagger UI : http://%s:%d/docs", settings.HOST, settings.PORT)
    logger.info("  Health     : http://%s:%d/api/health", settings.HOST, settings.PORT)
    logger.info("=" * 60)

    yield

    logger.info("Shutting down Cognick backend …")
    await close_db()
    logger.info("✓ Shutdown complete.")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Cognick API",
    description=(
        "**Cognick** - academic writing assistant.\n\n"
        "Researches a theme on the web, writes reading notes (fichas), "
        "drafts an academic work section by section and exports it as DOCX. "
        "Also hosts a chat assistant that can research before answering.\n\n"
        "Key endpoints:\n"
        "- `POST /api/works` - create a work\n"
        "- `POST /api/works/{id}/generate` - research + write in the background\n"
        "- `GET  /api/works/{id}/status` - poll progress\n"
        "- `GET  /api/works/{id}/export/docx` - download the work\n"
        "- `POST /api/chat/sessions/{id}/messages` - chat\n"
        "- `POST /api/scrape` - search or scrape the source site\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    # Skip noisy health-check polling from the frontend
    if request.url.path not in ("/api/health", "/api/health/", "/"):
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

def _error_body(request: Request, detail: str, exc: Exception) -> dict:
    return {
        "detail": detail,
        "error": str(exc),
        "path": str(request.url.path),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.exception_handler(LLMServiceError)
async def llm_exception_handler(request: Request, exc: LLMServiceError):
    """Upstream LLM failures are reported as 502 Bad Gateway."""
    logger.error("LLM failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=_error_body(request, "LLM provider error", exc),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "Internal server error", exc),
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,    prefix="/api/health", tags=["Health"])
app.include_router(flows.router,     prefix="/api",        tags=["Flows"])
app.include_router(scraping.router,  prefix="/api",        tags=["Scraping"])
app.include_router(export.router,    prefix="/api",        tags=["Export"])
app.include_router(works.router,     prefix="/api/works",  tags=["Works"])
app.include_router(chat.router,      prefix="/api/chat",   tags=["Chat"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root - returns basic service info."""
    return {
        "name": "Cognick API",
        "version": "0.1.0",
        "description": "Academic Writing Assistant Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "works": "/api/works",
            "chat": "/api/chat/sessions",
            "scrape": "/api/scrape",
            "docx": "/api/generate-docx",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
