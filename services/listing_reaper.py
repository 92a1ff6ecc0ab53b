# services/listing_reaper.py
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from services.catalog_client import CatalogClient
from services.errors import CatalogError
from services.models import ReapResult

logger = logging.getLogger(__name__)


def _age_key(listing: Dict[str, Any]):
    # ISO timestamps sort lexically; id breaks ties
    return (str(listing.get("updated_at") or listing.get("created_at") or ""), listing.get("id") or 0)


def _pick_keeper(listings: List[Dict[str, Any]], keep_run_id: Optional[str]) -> Dict[str, Any]:
    if keep_run_id:
        current = [l for l in listings if l.get("scrape_run_id") == keep_run_id]
        if current:
            return max(current, key=_age_key)
    return max(listings, key=_age_key)


async def reap_stale_listings(
    catalog: CatalogClient, store_id: int, keep_run_id: Optional[str] = None
) -> ReapResult:
    """
    Leave one listing per product for a store and delete the rest
    (sizes first, then the listing).

    With `keep_run_id` the listing written by that run wins; otherwise the
    most recently updated one does.
    """
    result = ReapResult(store_id=store_id)
    listings = [l for l in await catalog.list_listings(store_id) if str(l.get("tienda_id", store_id)) == str(store_id)]
    result.listings_seen = len(listings)

    by_product: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
    for l in listings:
        by_product[l.get("zapatilla_id")].append(l)

    for product_id, group in by_product.items():
        keeper = _pick_keeper(group, keep_run_id)
        result.listings_kept += 1
        for listing in group:
            if listing is keeper:
                continue
            try:
                for size in await catalog.find_sizes(listing["id"]):
                    await catalog.delete_size(size["id"])
                    result.sizes_deleted += 1
                await catalog.delete_listing(listing["id"])
                result.listings_deleted += 1
            except CatalogError as e:
                result.errors += 1
                logger.warning("Could not reap listing %s (product %s): %s", listing.get("id"), product_id, e)

    logger.info("Reaped store %s: kept=%d deleted=%d sizes=%d errors=%d", store_id,
                result.listings_kept, result.listings_deleted, result.sizes_deleted, result.errors)
    return result
