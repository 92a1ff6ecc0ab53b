# sources/feed.py
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping

import httpx

from services.models import IngestOptions, Store
from sources.base import SourceRegistry

logger = logging.getLogger(__name__)


class FeedSource:
    """
    Raw records from a JSON array, either served over HTTP(S) or sitting
    in a local file. Every entry is expected in the scraper record shape
    (marca, modelo, sku, precio, url_producto, tallas, ...).
    """

    def __init__(self, location: str, http: httpx.AsyncClient = None):
        self.location = location
        self.http = http

    def _is_remote(self) -> bool:
        return self.location.lower().startswith(("http://", "https://"))

    async def _load(self) -> Any:
        if self._is_remote():
            if self.http is not None:
                resp = await self.http.get(self.location)
            else:
                async with httpx.AsyncClient(timeout=30) as client:
                    resp = await client.get(self.location)
            resp.raise_for_status()
            return resp.json()
        return json.loads(Path(self.location).read_text(encoding="utf-8"))

    async def scrape(self, store: Store, options: IngestOptions) -> List[Dict[str, Any]]:
        data = await self._load()
        if isinstance(data, dict):
            data = data.get("items") or data.get("productos") or []
        if not isinstance(data, list):
            raise ValueError(f"Feed {self.location} did not contain a list of records")

        records = [r for r in data if isinstance(r, dict)]
        if options.max_items:
            records = records[: options.max_items]
        logger.info("Feed %s: %d records for store %s", self.location, len(records), store.name)
        return records


def build_registry(feeds: Mapping[str, str], http: httpx.AsyncClient = None) -> SourceRegistry:
    registry = SourceRegistry()
    for key, location in feeds.items():
        registry.register(key, FeedSource(location, http))
    return registry
