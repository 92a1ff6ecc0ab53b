"""HTTP surface of the ingest service."""

import pytest
from fastapi.testclient import TestClient

import ingest
from fake_catalog import StaticSource, raw_record
from main import app
from services.errors import AuthenticationFailed, NoSourceForStore, RunAlreadyActive, UnknownStore
from services.models import GlobalResult, IngestOptions, ReapResult, StoreResult

TOKEN = "admin-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class StubOrchestrator:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def _maybe_fail(self):
        if self.error is not None:
            raise self.error

    async def list_stores(self):
        self._maybe_fail()
        return []

    async def run_for_store(self, store_id, options):
        self.calls.append(("store", store_id, options))
        self._maybe_fail()
        return StoreResult(store_id=store_id, store_name="Footlocker", run_id="abc")

    async def run_for_all_stores(self, options):
        self.calls.append(("all", options))
        self._maybe_fail()
        return GlobalResult()

    async def reap(self, store_id):
        self._maybe_fail()
        return ReapResult(store_id=store_id)

    def status(self):
        return {"is_running": False, "running_stores": {}, "timestamp": "2024-05-01T10:00:00+00:00"}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(ingest, "INGEST_ADMIN_TOKEN", TOKEN)
    yield TestClient(app)
    app.state.orchestrator = None


def _use(orch):
    app.state.orchestrator = orch
    return orch


class TestAuth:
    def test_missing_token(self, client):
        _use(StubOrchestrator())
        assert client.get("/ingest/status").status_code == 401

    def test_wrong_token(self, client):
        _use(StubOrchestrator())
        resp = client.get("/ingest/status", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 403

    def test_unconfigured_token_refuses_everything(self, client, monkeypatch):
        monkeypatch.setattr(ingest, "INGEST_ADMIN_TOKEN", "")
        _use(StubOrchestrator())
        assert client.get("/ingest/status", headers={"Authorization": "Bearer "}).status_code == 503


def test_not_initialized(client):
    app.state.orchestrator = None
    assert client.get("/ingest/status", headers=AUTH).status_code == 503


def test_healthz(client):
    assert client.get("/healthz").text == "ok"


class TestRoutes:
    def test_run_store_passes_options(self, client):
        orch = _use(StubOrchestrator())
        resp = client.post("/ingest/run", json={"store_id": 4, "max_items": 10, "reap_stale": True}, headers=AUTH)

        assert resp.status_code == 200
        assert resp.json()["run_id"] == "abc"
        kind, store_id, options = orch.calls[0]
        assert (kind, store_id) == ("store", 4)
        assert options == IngestOptions(max_items=10, headless=True, reap_stale=True)

    def test_run_all_without_body(self, client):
        orch = _use(StubOrchestrator())
        resp = client.post("/ingest/run-all", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["stores_processed"] == 0
        assert orch.calls == [("all", IngestOptions())]

    def test_invalid_max_items(self, client):
        _use(StubOrchestrator())
        resp = client.post("/ingest/run", json={"store_id": 4, "max_items": 0}, headers=AUTH)
        assert resp.status_code == 422

    def test_status(self, client):
        _use(StubOrchestrator())
        body = client.get("/ingest/status", headers=AUTH).json()
        assert body["is_running"] is False

    def test_reap(self, client):
        _use(StubOrchestrator())
        resp = client.post("/ingest/reap/9", headers=AUTH)
        assert resp.json()["store_id"] == 9

    @pytest.mark.parametrize("error, status", [
        (RunAlreadyActive("store 4"), 409),
        (UnknownStore(4), 404),
        (NoSourceForStore("Snipes"), 404),
        (AuthenticationFailed("token refused"), 502),
    ])
    def test_error_mapping(self, client, error, status):
        _use(StubOrchestrator(error))
        resp = client.post("/ingest/run", json={"store_id": 4}, headers=AUTH)
        assert resp.status_code == status
        assert resp.json()["detail"] == str(error)


def test_end_to_end_store_run(client, backend, make_orchestrator):
    sid = backend.add_store("Footlocker")
    _use(make_orchestrator({"footlocker": StaticSource([raw_record(), raw_record(precio="gratis")])}))

    resp = client.post("/ingest/run", json={"store_id": sid}, headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert (body["total"], body["succeeded"], body["failed"]) == (2, 1, 1)
    assert body["store"] == {"id": sid, "name": "Footlocker"}

    stores = client.get("/ingest/stores", headers=AUTH).json()
    assert stores == [{"id": sid, "nombre": "Footlocker", "url": ""}]
