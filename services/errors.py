# services/errors.py
from typing import Any, Optional


class IngestError(Exception):
    """Base class for everything the ingestion pipeline raises on purpose."""


class AuthenticationFailed(IngestError):
    """Client-credentials exchange failed, or the catalog kept answering 401."""


class UnknownStore(IngestError):
    def __init__(self, store_id: Any, reason: str = "not found"):
        super().__init__(f"Store {store_id} does not exist or is not accessible ({reason})")
        self.store_id = store_id


class NoSourceForStore(IngestError):
    def __init__(self, store_name: str):
        super().__init__(f"No scraper source registered for store {store_name!r}")
        self.store_name = store_name


class RunAlreadyActive(IngestError):
    def __init__(self, scope: str):
        super().__init__(f"An ingest run is already active for {scope}")
        self.scope = scope


# ----- normalization (record-level, never retried) -----

class NormalizationError(IngestError):
    pass


class InvalidPrice(NormalizationError):
    pass


class InvalidSku(NormalizationError):
    pass


class EmptySizeLabel(NormalizationError):
    pass


class MissingField(NormalizationError):
    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}")
        self.field = field


# ----- catalog transport -----

class CatalogError(IngestError):
    """
    A failed catalog call. Carries enough context to diagnose the upstream
    failure without re-running it.
    """

    def __init__(
        self,
        method: str,
        path: str,
        status: Optional[int] = None,
        body: Any = None,
        detail: str = "",
    ):
        self.method = method.upper()
        self.path = path
        self.status = status
        self.body = body
        msg = f"{self.method} {path} failed"
        if status is not None:
            msg += f" - Status: {status}"
        if body not in (None, ""):
            msg += f", Data: {str(body)[:200]}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class CatalogConflict(CatalogError):
    """409: the row already exists. Expected under re-runs and concurrent writers."""


class CatalogNotFound(CatalogError):
    pass


class CatalogRequestError(CatalogError):
    """Any other 4xx. Retrying the same payload will not help."""


class TransientCatalogError(CatalogError):
    """5xx, 429 or a timeout. Worth retrying with backoff."""


class CatalogUnavailable(TransientCatalogError):
    """The backend could not be reached at all (connect/DNS/protocol failure)."""
