# sources/base.py
import logging
from typing import Any, Dict, List, Optional, Protocol

from services.errors import NoSourceForStore
from services.models import IngestOptions, Store

logger = logging.getLogger(__name__)


class ScraperSource(Protocol):
    """Anything that can produce raw product records for one store."""

    async def scrape(self, store: Store, options: IngestOptions) -> List[Dict[str, Any]]:
        ...


class SourceRegistry:
    """
    Picks a source for a store by matching a registered key against the
    store's name or URL (case-insensitive substring).
    """

    def __init__(self, sources: Optional[Dict[str, ScraperSource]] = None):
        self._sources: Dict[str, ScraperSource] = {}
        for key, source in (sources or {}).items():
            self.register(key, source)

    def register(self, key: str, source: ScraperSource) -> None:
        self._sources[key.strip().lower()] = source

    def keys(self) -> List[str]:
        return sorted(self._sources)

    def for_store(self, store: Store) -> ScraperSource:
        name = (store.name or "").lower()
        url = (store.url or "").lower()
        for key, source in self._sources.items():
            if key in name or key in url:
                logger.info("Using source %r for store %s (id=%s)", key, store.name, store.id)
                return source
        logger.error("No source registered for store %s (id=%s)", store.name, store.id)
        raise NoSourceForStore(store.name)
