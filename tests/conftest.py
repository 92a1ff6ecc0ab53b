"""Shared fixtures: fake catalog backend, wired clients, no-op sleeps."""

import pytest

from fake_catalog import AUTH_HOST, BASE_URL, FakeCatalog, FakeSleep
from services.auth_client import CredentialProvider
from services.catalog_client import CatalogClient
from services.orchestrator import IngestOrchestrator, RunRegistry
from services.reconcile_service import ReconciliationEngine
from sources.base import SourceRegistry


@pytest.fixture
def backend():
    return FakeCatalog()


@pytest.fixture
def sleep():
    return FakeSleep()


@pytest.fixture
def http(backend):
    return backend.client()


@pytest.fixture
def credentials(http):
    return CredentialProvider(
        http,
        domain=AUTH_HOST,
        client_id="scraper-client",
        client_secret="s3cret",
        audience="https://api.zapatillas.test",
    )


@pytest.fixture
def catalog(http, credentials):
    return CatalogClient(http, BASE_URL, credentials)


@pytest.fixture
def engine(catalog, sleep):
    return ReconciliationEngine(catalog, sleep=sleep, size_timeout=5)


@pytest.fixture
def make_orchestrator(catalog, engine, sleep):
    def _make(sources=None, registry=None, **kw):
        return IngestOrchestrator(
            catalog,
            engine,
            SourceRegistry(sources or {}),
            registry or RunRegistry(),
            sleep=sleep,
            **kw,
        )
    return _make
