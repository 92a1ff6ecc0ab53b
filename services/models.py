# services/models.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class Store:
    id: int
    name: str
    url: str = ""
    active: bool = True

    @classmethod
    def from_api(cls, row: Dict[str, Any]) -> "Store":
        return cls(
            id=int(row["id"]),
            name=row.get("nombre") or "",
            url=row.get("url") or "",
            active=bool(row.get("activa", True)),
        )


@dataclass
class SizeEntry:
    label: str
    available: bool = False


@dataclass
class NormalizedRecord:
    """One scraped product, cleaned and ready for reconciliation."""

    brand: str
    model: str
    sku: str
    price: float
    url: str
    store_id: int
    sizes: List[SizeEntry] = field(default_factory=list)
    image: Optional[str] = None
    description: Optional[str] = None
    store_model: str = ""
    generated_sku: bool = False

    @property
    def listing_available(self) -> bool:
        # A product page without size data is still a live listing
        if not self.sizes:
            return True
        return any(s.available for s in self.sizes)


@dataclass
class IngestOptions:
    max_items: Optional[int] = None
    headless: bool = True
    reap_stale: bool = False


@dataclass
class ReconcileOutcome:
    product: Dict[str, Any]
    listing: Dict[str, Any]
    sizes_applied: int = 0
    sizes_failed: int = 0
    failed_labels: List[str] = field(default_factory=list)

    @property
    def total_sizes(self) -> int:
        return self.sizes_applied + self.sizes_failed


@dataclass
class RecordResult:
    success: bool
    brand: str
    model: str
    sku: str
    product_id: Optional[int] = None
    listing_id: Optional[int] = None
    sizes_applied: int = 0
    sizes_failed: int = 0
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReapResult:
    store_id: int
    listings_seen: int = 0
    listings_kept: int = 0
    listings_deleted: int = 0
    sizes_deleted: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StoreResult:
    store_id: int
    store_name: str
    run_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    sizes_applied: int = 0
    sizes_failed: int = 0
    records: List[RecordResult] = field(default_factory=list)
    reaped: Optional[ReapResult] = None

    def add(self, result: RecordResult) -> None:
        self.records.append(result)
        if result.success:
            self.succeeded += 1
        else:
            self.failed += 1
        self.sizes_applied += result.sizes_applied
        self.sizes_failed += result.sizes_failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            # a finished store run is a success even when single records failed
            "success": True,
            "store": {"id": self.store_id, "name": self.store_name},
            "run_id": self.run_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "sizes_applied": self.sizes_applied,
            "sizes_failed": self.sizes_failed,
            "records": [r.to_dict() for r in self.records],
            "reaped": self.reaped.to_dict() if self.reaped else None,
        }


@dataclass
class StoreOutcome:
    store_id: int
    store_name: str
    success: bool
    result: Optional[StoreResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "store": {"id": self.store_id, "name": self.store_name},
            "success": self.success,
        }
        if self.result is not None:
            out["total"] = self.result.total
            out["succeeded"] = self.result.succeeded
            out["failed"] = self.result.failed
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class GlobalResult:
    stores: List[StoreOutcome] = field(default_factory=list)

    @property
    def stores_processed(self) -> int:
        return len(self.stores)

    def _sum(self, attr: str) -> int:
        return sum(getattr(o.result, attr) for o in self.stores if o.result is not None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "stores_processed": self.stores_processed,
            "stores_succeeded": sum(1 for o in self.stores if o.success),
            "stores_failed": sum(1 for o in self.stores if not o.success),
            "total": self._sum("total"),
            "succeeded": self._sum("succeeded"),
            "failed": self._sum("failed"),
            "sizes_applied": self._sum("sizes_applied"),
            "sizes_failed": self._sum("sizes_failed"),
            "stores": [o.to_dict() for o in self.stores],
        }
