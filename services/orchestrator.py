# services/orchestrator.py
import asyncio
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from services.catalog_client import CatalogClient
from services.errors import (
    AuthenticationFailed,
    CatalogUnavailable,
    IngestError,
    NormalizationError,
    RunAlreadyActive,
    TransientCatalogError,
    UnknownStore,
)
from services.listing_reaper import reap_stale_listings
from services.models import (
    GlobalResult,
    IngestOptions,
    ReapResult,
    RecordResult,
    Store,
    StoreOutcome,
    StoreResult,
)
from services.normalizer import normalize
from services.reconcile_service import ReconciliationEngine
from sources.base import SourceRegistry

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RunRegistry:
    """
    Which runs are in flight. Registration happens on entering the context
    manager and is always undone on exit, whatever the run's outcome.

    Holds are counted, so with force_reset a run that overlaps another one
    releases only its own hold.
    """

    def __init__(self, force_reset: bool = False):
        self.force_reset = force_reset
        self._stores: Dict[int, int] = {}
        self._global = 0

    def is_store_running(self, store_id: int) -> bool:
        return self._stores.get(store_id, 0) > 0

    @property
    def global_running(self) -> bool:
        return self._global > 0

    @contextmanager
    def hold_store(self, store_id: int):
        if self.is_store_running(store_id):
            if not self.force_reset:
                raise RunAlreadyActive(f"store {store_id}")
            logger.warning("Store %s flagged as running, resetting flag (force_reset)", store_id)
        self._stores[store_id] = self._stores.get(store_id, 0) + 1
        try:
            yield
        finally:
            # a forced global reset may already have cleared it
            held = self._stores.get(store_id, 0)
            if held <= 1:
                self._stores.pop(store_id, None)
            else:
                self._stores[store_id] = held - 1

    @contextmanager
    def hold_global(self):
        if self.global_running:
            if not self.force_reset:
                raise RunAlreadyActive("all stores")
            logger.warning("Global run flagged as running, resetting all flags (force_reset)")
            self._stores.clear()
        self._global += 1
        try:
            yield
        finally:
            self._global = max(0, self._global - 1)

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self.global_running,
            "running_stores": {str(sid): True for sid in sorted(self._stores)},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class IngestOrchestrator:
    def __init__(
        self,
        catalog: CatalogClient,
        engine: ReconciliationEngine,
        sources: SourceRegistry,
        registry: Optional[RunRegistry] = None,
        *,
        batch_size: int = 5,
        max_attempts: int = 3,
        record_timeout: float = 60.0,
        retry_delay: float = 2.0,
        record_pause: float = 0.5,
        batch_pause: float = 3.0,
        store_pause: float = 10.0,
        default_max_items: int = 50,
        max_consecutive_unavailable: int = 3,
        scrape_attempts: int = 2,
        scrape_empty_pause: float = 5.0,
        scrape_error_pause: float = 10.0,
        store_list_attempts: int = 3,
        store_list_pause: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.catalog = catalog
        self.engine = engine
        self.sources = sources
        self.registry = registry or RunRegistry()
        self.batch_size = max(1, batch_size)
        self.max_attempts = max(1, max_attempts)
        self.record_timeout = record_timeout
        self.retry_delay = retry_delay
        self.record_pause = record_pause
        self.batch_pause = batch_pause
        self.store_pause = store_pause
        self.default_max_items = default_max_items
        self.max_consecutive_unavailable = max(1, max_consecutive_unavailable)
        self.scrape_attempts = max(1, scrape_attempts)
        self.scrape_empty_pause = scrape_empty_pause
        self.scrape_error_pause = scrape_error_pause
        self.store_list_attempts = max(1, store_list_attempts)
        self.store_list_pause = store_list_pause
        self.sleep = sleep

    def status(self) -> Dict[str, Any]:
        return self.registry.status()

    def _options(self, options: Optional[IngestOptions]) -> IngestOptions:
        options = options or IngestOptions()
        if options.max_items is None:
            options = IngestOptions(
                max_items=self.default_max_items,
                headless=options.headless,
                reap_stale=options.reap_stale,
            )
        return options

    # ----- stores -----

    async def list_stores(self) -> List[Store]:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.store_list_attempts + 1):
            try:
                return await self.catalog.list_stores()
            except TransientCatalogError as e:
                last_error = e
                logger.warning("Fetching stores failed (%d/%d): %s", attempt, self.store_list_attempts, e)
                if attempt < self.store_list_attempts:
                    await self.sleep(self.store_list_pause)
        raise last_error

    async def _find_store(self, store_id: int) -> Store:
        for store in await self.list_stores():
            if store.id == store_id:
                return store
        raise UnknownStore(store_id)

    # ----- scraping -----

    async def _scrape(self, store: Store, options: IngestOptions) -> List[Dict[str, Any]]:
        source = self.sources.for_store(store)
        records: List[Dict[str, Any]] = []
        last_error: Optional[Exception] = None

        for attempt in range(1, self.scrape_attempts + 1):
            try:
                records = await source.scrape(store, options)
            except (AuthenticationFailed, CatalogUnavailable):
                raise
            except Exception as e:
                # any scraper failure gets another attempt
                last_error = e
                logger.error("Scrape attempt %d/%d for %s failed: %s", attempt, self.scrape_attempts, store.name, e)
                if attempt < self.scrape_attempts:
                    await self.sleep(self.scrape_error_pause)
                continue
            if records:
                break
            logger.warning("Scrape attempt %d/%d for %s returned nothing", attempt, self.scrape_attempts, store.name)
            if attempt < self.scrape_attempts:
                await self.sleep(self.scrape_empty_pause)

        if not records and last_error is not None:
            raise last_error
        return records[: options.max_items] if options.max_items else records

    # ----- records -----

    async def _process_record(
        self, store: Store, raw: Dict[str, Any], run_id: str
    ) -> Tuple[RecordResult, Optional[Exception]]:
        brand, model, sku = str(raw.get("marca") or ""), str(raw.get("modelo") or ""), str(raw.get("sku") or "")
        try:
            record = normalize(raw, store.id)
        except NormalizationError as e:
            logger.warning("Skipping %s %s: %s", brand, model, e)
            return RecordResult(False, brand, model, sku, error=str(e)), e
        except Exception as e:
            logger.exception("Skipping %s %s: unreadable record", brand, model)
            return RecordResult(False, brand, model, sku, error=str(e) or type(e).__name__), e

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                outcome = await asyncio.wait_for(
                    self.engine.reconcile(store.id, record, run_id), self.record_timeout
                )
                return RecordResult(
                    True,
                    record.brand,
                    record.model,
                    record.sku,
                    product_id=outcome.product.get("id"),
                    listing_id=outcome.listing.get("id"),
                    sizes_applied=outcome.sizes_applied,
                    sizes_failed=outcome.sizes_failed,
                    attempts=attempt,
                ), None
            except AuthenticationFailed:
                raise
            except (TransientCatalogError, asyncio.TimeoutError) as e:
                last_error = e
                msg = str(e) or f"timed out after {self.record_timeout}s"
                logger.warning("SKU %s attempt %d/%d failed: %s", record.sku, attempt, self.max_attempts, msg)
                if attempt < self.max_attempts:
                    await self.sleep(self.retry_delay * attempt)
            except IngestError as e:
                logger.error("SKU %s failed: %s", record.sku, e)
                return RecordResult(False, record.brand, record.model, record.sku,
                                    attempts=attempt, error=str(e)), e
            except Exception as e:
                # malformed backend reply and the like
                logger.exception("SKU %s failed unexpectedly", record.sku)
                return RecordResult(False, record.brand, record.model, record.sku,
                                    attempts=attempt, error=str(e) or type(e).__name__), e

        msg = str(last_error) or f"timed out after {self.record_timeout}s"
        return RecordResult(False, record.brand, record.model, record.sku,
                            attempts=self.max_attempts, error=msg), last_error

    async def _process(self, store: Store, raws: List[Dict[str, Any]], result: StoreResult) -> None:
        unavailable_streak = 0
        batches = [raws[i:i + self.batch_size] for i in range(0, len(raws), self.batch_size)]

        for b, batch in enumerate(batches, start=1):
            if b > 1:
                await self.sleep(self.batch_pause)
            logger.info("Store %s: batch %d/%d (%d records)", store.name, b, len(batches), len(batch))

            for i, raw in enumerate(batch):
                if i:
                    await self.sleep(self.record_pause)
                rec, err = await self._process_record(store, raw, result.run_id)
                result.add(rec)

                if isinstance(err, CatalogUnavailable):
                    unavailable_streak += 1
                    if unavailable_streak >= self.max_consecutive_unavailable:
                        logger.error("Catalog unreachable for %d records in a row, aborting store %s",
                                     unavailable_streak, store.name)
                        raise err
                elif not isinstance(err, NormalizationError):
                    unavailable_streak = 0

    async def _run_store(self, store: Store, options: IngestOptions) -> StoreResult:
        run_id = uuid.uuid4().hex
        logger.info("Ingest start: store=%s (id=%s) run=%s max_items=%s",
                    store.name, store.id, run_id, options.max_items)

        raws = await self._scrape(store, options)
        result = StoreResult(store_id=store.id, store_name=store.name, run_id=run_id, total=len(raws))
        await self._process(store, raws, result)

        if options.reap_stale:
            result.reaped = await reap_stale_listings(self.catalog, store.id, keep_run_id=run_id)

        logger.info("Ingest done: store=%s total=%d ok=%d failed=%d sizes=%d/%d",
                    store.name, result.total, result.succeeded, result.failed,
                    result.sizes_applied, result.sizes_applied + result.sizes_failed)
        return result

    # ----- public -----

    async def run_for_store(self, store_id: int, options: Optional[IngestOptions] = None) -> StoreResult:
        options = self._options(options)
        with self.registry.hold_store(store_id):
            store = await self._find_store(store_id)
            return await self._run_store(store, options)

    async def run_for_all_stores(self, options: Optional[IngestOptions] = None) -> GlobalResult:
        options = self._options(options)
        with self.registry.hold_global():
            stores = await self.list_stores()
            logger.info("Ingest all: %d active stores", len(stores))
            out = GlobalResult()

            for i, store in enumerate(stores):
                if i:
                    await self.sleep(self.store_pause)
                if self.registry.is_store_running(store.id):
                    logger.warning("Store %s already running, skipping", store.name)
                    out.stores.append(StoreOutcome(store.id, store.name, False, error="run already active"))
                    continue
                try:
                    with self.registry.hold_store(store.id):
                        result = await self._run_store(store, options)
                    out.stores.append(StoreOutcome(store.id, store.name, True, result=result))
                except (AuthenticationFailed, CatalogUnavailable):
                    raise
                except Exception as e:
                    # one broken store must not stop the others
                    logger.exception("Store %s failed", store.name)
                    out.stores.append(StoreOutcome(store.id, store.name, False, error=str(e)))

            return out

    async def reap(self, store_id: int) -> ReapResult:
        with self.registry.hold_store(store_id):
            await self.engine.verify_store(store_id)
            return await reap_stale_listings(self.catalog, store_id)


def build_orchestrator(http, sleep: Sleep = asyncio.sleep) -> IngestOrchestrator:
    """Wire the whole pipeline from settings around one shared httpx client."""
    import settings
    from services.auth_client import CredentialProvider
    from sources.feed import build_registry

    credentials = CredentialProvider(
        http,
        domain=settings.AUTH0_DOMAIN,
        client_id=settings.AUTH0_CLIENT_ID,
        client_secret=settings.AUTH0_CLIENT_SECRET,
        audience=settings.AUTH0_AUDIENCE,
        scope=settings.AUTH0_SCOPE,
    )
    catalog = CatalogClient(http, settings.API_BASE_URL, credentials)
    engine = ReconciliationEngine(
        catalog,
        listing_attempts=settings.INGEST_MAX_ATTEMPTS,
        backoff=settings.RETRY_BASE_DELAY,
        size_pause=settings.SIZE_PAUSE,
        size_timeout=settings.INGEST_SIZE_TIMEOUT,
        sleep=sleep,
    )
    return IngestOrchestrator(
        catalog,
        engine,
        build_registry(settings.SCRAPER_FEEDS, http),
        RunRegistry(force_reset=settings.INGEST_FORCE_RESET),
        batch_size=settings.INGEST_BATCH_SIZE,
        max_attempts=settings.INGEST_MAX_ATTEMPTS,
        record_timeout=settings.INGEST_RECORD_TIMEOUT,
        retry_delay=settings.RETRY_BASE_DELAY,
        record_pause=settings.RECORD_PAUSE,
        batch_pause=settings.BATCH_PAUSE,
        store_pause=settings.STORE_PAUSE,
        default_max_items=settings.SCRAPER_MAX_ITEMS,
        max_consecutive_unavailable=settings.MAX_CONSECUTIVE_UNAVAILABLE,
        sleep=sleep,
    )
