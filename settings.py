# settings.py
import os
from dotenv import load_dotenv
from fastapi import Request, HTTPException

load_dotenv()

# -----------------------------------------------------------------------------
# Core app settings
# -----------------------------------------------------------------------------
ENV = (os.getenv("ENV") or "development").lower()
ENABLE_DOCS = ENV != "production"

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()

# Bearer token required on the /ingest trigger endpoints
INGEST_ADMIN_TOKEN = os.getenv("INGEST_ADMIN_TOKEN", "").strip()

# -----------------------------------------------------------------------------
# Catalog backend + identity provider (client-credentials)
# -----------------------------------------------------------------------------
API_BASE_URL = (os.getenv("API_BASE_URL") or "http://localhost:3000").rstrip("/")
CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "30"))

AUTH0_DOMAIN = os.getenv("AUTH0_DOMAIN", "").strip()
AUTH0_CLIENT_ID = os.getenv("AUTH0_SCRAPER_CLIENT_ID", "").strip()
AUTH0_CLIENT_SECRET = os.getenv("AUTH0_SCRAPER_CLIENT_SECRET", "").strip()
AUTH0_AUDIENCE = os.getenv("AUTH0_AUDIENCE", "").strip()
AUTH0_SCOPE = os.getenv("AUTH0_SCOPE") or "admin:zapatillas"

# -----------------------------------------------------------------------------
# Ingestion policy
# -----------------------------------------------------------------------------
def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name) or default)
    except ValueError:
        return default

SCRAPER_MAX_ITEMS = _int_env("SCRAPER_MAX_ITEMS", 50)
INGEST_BATCH_SIZE = _int_env("INGEST_BATCH_SIZE", 5)
INGEST_MAX_ATTEMPTS = _int_env("INGEST_MAX_ATTEMPTS", 3)
INGEST_RECORD_TIMEOUT = float(os.getenv("INGEST_RECORD_TIMEOUT", "60"))
INGEST_SIZE_TIMEOUT = float(os.getenv("INGEST_SIZE_TIMEOUT", "15"))

# Seconds. Listing/record backoff grows linearly: base * attempt
RETRY_BASE_DELAY = 2.0
SIZE_PAUSE = 0.1
RECORD_PAUSE = 0.5
BATCH_PAUSE = 3.0
STORE_PAUSE = 10.0

# Abort a run after this many records in a row fail because the catalog is unreachable
MAX_CONSECUTIVE_UNAVAILABLE = _int_env("MAX_CONSECUTIVE_UNAVAILABLE", 3)

# Legacy single-flight behaviour: reset a "running" flag instead of rejecting the run
INGEST_FORCE_RESET = (os.getenv("INGEST_FORCE_RESET") or "").lower() in {"1", "true", "yes"}

# -----------------------------------------------------------------------------
# Scraper sources
# -----------------------------------------------------------------------------
# "footlocker=https://feeds.example.com/footlocker.json,jdsports=/data/jd.json"
SCRAPER_FEEDS = {
    k.strip().lower(): v.strip()
    for k, _, v in (
        item.partition("=") for item in (os.getenv("SCRAPER_FEEDS") or "").split(",")
    )
    if k.strip() and v.strip()
}

# -----------------------------------------------------------------------------
# Helper for accessing the orchestrator in routes
# -----------------------------------------------------------------------------
def get_orchestrator(request: Request):
    """
    Dependency to fetch the ingest orchestrator from app.state.
    Raises HTTPException if it is missing (e.g., before startup).
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Ingest service not initialized")
    return orchestrator
