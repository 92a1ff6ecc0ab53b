# ingest.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from settings import INGEST_ADMIN_TOKEN, get_orchestrator
from services.errors import (
    AuthenticationFailed,
    CatalogError,
    IngestError,
    NoSourceForStore,
    RunAlreadyActive,
    UnknownStore,
)
from services.models import IngestOptions

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/ingest", tags=["ingest"])


def _ensure_authorized(authorization: str | None):
    if not INGEST_ADMIN_TOKEN:
        raise HTTPException(status_code=503, detail="Ingest admin token not configured")
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1]
    if token != INGEST_ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid token")


def _http_error(e: IngestError) -> HTTPException:
    if isinstance(e, RunAlreadyActive):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (UnknownStore, NoSourceForStore)):
        return HTTPException(status_code=404, detail=str(e))
    # upstream (identity provider or catalog) trouble
    if isinstance(e, (AuthenticationFailed, CatalogError)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


# ---------- Schemas ----------
class RunOptionsIn(BaseModel):
    max_items: Optional[int] = Field(None, ge=1, description="Cap on scraped records (default SCRAPER_MAX_ITEMS)")
    headless: bool = True
    reap_stale: bool = False

    def to_options(self) -> IngestOptions:
        return IngestOptions(max_items=self.max_items, headless=self.headless, reap_stale=self.reap_stale)


class RunStoreIn(RunOptionsIn):
    store_id: int = Field(..., description="Catalog id of the store (tienda)")


# ---------- Routes ----------
@router.get("/stores")
async def list_stores(
    authorization: str | None = Header(default=None),
    orchestrator=Depends(get_orchestrator),
):
    _ensure_authorized(authorization)
    try:
        stores = await orchestrator.list_stores()
    except IngestError as e:
        raise _http_error(e) from e
    return [{"id": s.id, "nombre": s.name, "url": s.url} for s in stores]


@router.post("/run")
async def run_store(
    body: RunStoreIn,
    authorization: str | None = Header(default=None),
    orchestrator=Depends(get_orchestrator),
):
    """Scrape one store and reconcile its records. Blocks until the run finishes."""
    _ensure_authorized(authorization)
    try:
        result = await orchestrator.run_for_store(body.store_id, body.to_options())
    except IngestError as e:
        logger.error("Ingest run for store %s failed: %s", body.store_id, e)
        raise _http_error(e) from e
    return result.to_dict()


@router.post("/run-all")
async def run_all(
    body: Optional[RunOptionsIn] = None,
    authorization: str | None = Header(default=None),
    orchestrator=Depends(get_orchestrator),
):
    _ensure_authorized(authorization)
    options = (body or RunOptionsIn()).to_options()
    try:
        result = await orchestrator.run_for_all_stores(options)
    except IngestError as e:
        logger.error("Ingest run for all stores failed: %s", e)
        raise _http_error(e) from e
    return result.to_dict()


@router.get("/status")
async def status(
    authorization: str | None = Header(default=None),
    orchestrator=Depends(get_orchestrator),
):
    _ensure_authorized(authorization)
    return orchestrator.status()


@router.post("/reap/{store_id}")
async def reap(
    store_id: int,
    authorization: str | None = Header(default=None),
    orchestrator=Depends(get_orchestrator),
):
    _ensure_authorized(authorization)
    try:
        result = await orchestrator.reap(store_id)
    except IngestError as e:
        raise _http_error(e) from e
    return result.to_dict()
