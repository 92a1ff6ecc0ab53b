# main.py
import os
import sys
import logging
import traceback

import httpx
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Ensure app root on path
APP_ROOT = os.path.dirname(os.path.abspath(__file__))
if APP_ROOT not in sys.path:
    sys.path.insert(0, APP_ROOT)

from settings import ENABLE_DOCS, CATALOG_TIMEOUT, API_BASE_URL, SCRAPER_FEEDS
from services.orchestrator import build_orchestrator

# Routers
from ingest import router as ingest_router

logger = logging.getLogger("uvicorn.error")

app = FastAPI(
    title="Sneaker Catalog Ingest",
    version="1.0.0",
    docs_url="/docs" if ENABLE_DOCS else None,
    redoc_url="/redoc" if ENABLE_DOCS else None,
    openapi_url="/openapi.json" if ENABLE_DOCS else None,
)

# ---- log full tracebacks so 500s aren't silent ----
class TraceLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error("\n===== UNCAUGHT EXCEPTION =====")
            logger.error("Path: %s %s", request.method, request.url.path)
            logger.error(traceback.format_exc())
            logger.error("===== END TRACE =====\n")
            raise
app.add_middleware(TraceLogMiddleware)


@app.on_event("startup")
async def startup():
    # tests may inject their own orchestrator before startup
    if getattr(app.state, "orchestrator", None) is not None:
        return
    app.state.http = httpx.AsyncClient(timeout=CATALOG_TIMEOUT)
    app.state.orchestrator = build_orchestrator(app.state.http)
    logger.info("Ingest pipeline ready (catalog=%s, feeds=%s)", API_BASE_URL, sorted(SCRAPER_FEEDS) or "none")

@app.on_event("shutdown")
async def shutdown():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        logger.info("HTTP client closed")


app.include_router(ingest_router)   # /ingest/*

@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    return "ok"


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=ENABLE_DOCS,
        log_level="info",
    )
