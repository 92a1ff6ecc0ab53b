# services/reconcile_service.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from services.catalog_client import CatalogClient
from services.errors import (
    CatalogConflict,
    CatalogError,
    CatalogNotFound,
    TransientCatalogError,
    UnknownStore,
)
from services.models import NormalizedRecord, ReconcileOutcome, SizeEntry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def _exact(rows, key: str, value: Any) -> Optional[Dict[str, Any]]:
    # the backend filter may be fuzzy; only an exact match counts
    for row in rows:
        if row.get(key) == value:
            return row
    return None


class ReconciliationEngine:
    """
    Writes one normalized record into the catalog:

    1. make sure the store exists and is active
    2. find the product by exact SKU or create it
    3. create a fresh store listing (never updated in place)
    4. create/patch each size under that listing

    Size failures are counted, never raised: a listing without some of its
    sizes is still worth keeping.
    """

    def __init__(
        self,
        catalog: CatalogClient,
        *,
        listing_attempts: int = 3,
        backoff: float = 2.0,
        size_pause: float = 0.1,
        size_timeout: float = 15.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.catalog = catalog
        self.listing_attempts = max(1, listing_attempts)
        self.backoff = backoff
        self.size_pause = size_pause
        self.size_timeout = size_timeout
        self.sleep = sleep

    async def verify_store(self, store_id: int) -> Dict[str, Any]:
        try:
            store = await self.catalog.get_store(store_id)
        except CatalogNotFound:
            raise UnknownStore(store_id) from None
        if not store or not store.get("activa", True):
            raise UnknownStore(store_id, "inactive")
        return store

    # ----- product -----

    async def _find_product(self, sku: str) -> Optional[Dict[str, Any]]:
        return _exact(await self.catalog.find_products_by_sku(sku), "sku", sku)

    async def _touch_product(self, product: Dict[str, Any], record: NormalizedRecord) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if not product.get("activa"):
            changes["activa"] = True
        if not product.get("imagen") and record.image:
            changes["imagen"] = record.image
        if changes:
            await self.catalog.patch_product(product["id"], changes)
            logger.info("Product %s updated: %s", product["id"], sorted(changes))
            product = {**product, **changes}
        return product

    async def resolve_product(self, record: NormalizedRecord) -> Dict[str, Any]:
        existing = await self._find_product(record.sku)
        if existing:
            logger.debug("Product found by SKU %s -> id=%s", record.sku, existing["id"])
            return await self._touch_product(existing, record)

        data: Dict[str, Any] = {
            "marca": record.brand,
            "modelo": record.model,
            "sku": record.sku,
            "activa": True,
        }
        if record.image:
            data["imagen"] = record.image
        if record.description:
            data["descripcion"] = record.description

        try:
            created = await self.catalog.create_product(data)
        except CatalogConflict:
            # someone created the same SKU after our lookup; re-read it
            existing = await self._find_product(record.sku)
            if existing is None:
                raise
            logger.info("Product SKU %s created concurrently, reusing id=%s", record.sku, existing["id"])
            return await self._touch_product(existing, record)

        logger.info("Product created: %s %s (SKU %s) id=%s",
                    record.brand, record.model, record.sku, created.get("id"))
        return created

    # ----- listing -----

    def _listing_payload(
        self, product_id: int, store_id: int, record: NormalizedRecord, run_id: Optional[str]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "disponible": record.listing_available,
            "zapatilla_id": product_id,
            "tienda_id": store_id,
            "precio": round(record.price, 2),
            "url_producto": record.url,
            "modelo_tienda": record.store_model or f"{record.brand} {record.model}",
        }
        if run_id:
            payload["scrape_run_id"] = run_id
        return payload

    async def create_listing(
        self,
        product_id: int,
        store_id: int,
        record: NormalizedRecord,
        run_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = self._listing_payload(product_id, store_id, record, run_id)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.listing_attempts + 1):
            try:
                # both rows must still be there before we reference them
                await self.catalog.get_product(product_id)
                await self.verify_store(store_id)
                listing = await self.catalog.create_listing(payload)
                logger.info("Listing created id=%s (product=%s store=%s precio=%.2f)",
                            listing.get("id"), product_id, store_id, payload["precio"])
                return listing
            except TransientCatalogError as e:
                last_error = e
                logger.warning("Listing attempt %d/%d failed: %s", attempt, self.listing_attempts, e)
                if attempt < self.listing_attempts:
                    await self.sleep(self.backoff * attempt)

        raise last_error

    # ----- sizes -----

    async def _apply_size(self, listing_id: int, size: SizeEntry) -> bool:
        try:
            await self.catalog.create_size(listing_id, size.label, size.available)
            return True
        except CatalogConflict:
            pass

        rows = await self.catalog.find_sizes(listing_id, size.label)
        existing = _exact(rows, "talla", size.label)
        if existing is None:
            logger.warning("Size %s reported as duplicate but lookup found nothing (listing %s)",
                           size.label, listing_id)
            return False
        if bool(existing.get("disponible")) != size.available:
            await self.catalog.patch_size(existing["id"], {"disponible": size.available})
        return True

    async def apply_size(self, listing_id: int, size: SizeEntry) -> bool:
        try:
            return await asyncio.wait_for(self._apply_size(listing_id, size), self.size_timeout)
        except asyncio.TimeoutError:
            logger.warning("Size %s timed out after %ss (listing %s)", size.label, self.size_timeout, listing_id)
        except CatalogError as e:
            logger.warning("Size %s failed (listing %s): %s", size.label, listing_id, e)
        return False

    # ----- record -----

    async def reconcile(
        self, store_id: int, record: NormalizedRecord, run_id: Optional[str] = None
    ) -> ReconcileOutcome:
        await self.verify_store(store_id)
        product = await self.resolve_product(record)
        listing = await self.create_listing(product["id"], store_id, record, run_id)

        outcome = ReconcileOutcome(product=product, listing=listing)
        for i, size in enumerate(record.sizes):
            if i:
                await self.sleep(self.size_pause)
            if await self.apply_size(listing["id"], size):
                outcome.sizes_applied += 1
            else:
                outcome.sizes_failed += 1
                outcome.failed_labels.append(size.label)

        if outcome.sizes_failed:
            logger.warning("SKU %s: %d/%d sizes failed (%s)", record.sku, outcome.sizes_failed,
                           outcome.total_sizes, ", ".join(outcome.failed_labels))
        return outcome
