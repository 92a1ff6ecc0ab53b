"""Catalog client: auth retry and error classification."""

import asyncio

import httpx
import pytest

from services.errors import (
    AuthenticationFailed,
    CatalogConflict,
    CatalogNotFound,
    CatalogRequestError,
    CatalogUnavailable,
    TransientCatalogError,
)


class TestAuthRetry:
    def test_bearer_header_attached(self, backend, catalog):
        backend.add_store("Footlocker")
        stores = asyncio.run(catalog.list_stores())
        assert [s.name for s in stores] == ["Footlocker"]
        assert backend.token_requests == 1

    def test_401_refreshes_token_and_retries_once(self, backend, catalog):
        backend.add_store("Footlocker")

        async def scenario():
            await catalog.list_stores()
            backend.revoke_tokens()
            return await catalog.list_stores()

        stores = asyncio.run(scenario())
        assert len(stores) == 1
        assert backend.token_requests == 2
        assert backend.count("GET", "/tiendas") == 3

    def test_second_401_is_fatal(self, backend, catalog):
        backend.fail("GET", "/tiendas", 401, 401)
        with pytest.raises(AuthenticationFailed):
            asyncio.run(catalog.list_stores())
        assert backend.count("GET", "/tiendas") == 2


class TestErrorMapping:
    @pytest.mark.parametrize("status, exc", [
        (409, CatalogConflict),
        (404, CatalogNotFound),
        (400, CatalogRequestError),
        (422, CatalogRequestError),
        (429, TransientCatalogError),
        (500, TransientCatalogError),
        (503, TransientCatalogError),
    ])
    def test_status_classes(self, backend, catalog, status, exc):
        backend.fail("POST", "/zapatillas", status)
        with pytest.raises(exc) as info:
            asyncio.run(catalog.create_product({"sku": "ABC-1"}))
        err = info.value
        assert err.status == status
        assert err.method == "POST"
        assert err.path == "/zapatillas"
        assert f"Status: {status}" in str(err)

    def test_timeout_is_transient(self, backend, catalog):
        backend.fail("GET", "/tiendas", httpx.ReadTimeout("slow"))
        with pytest.raises(TransientCatalogError) as info:
            asyncio.run(catalog.list_stores())
        assert not isinstance(info.value, CatalogUnavailable)

    def test_connection_failure_is_unavailable(self, backend, catalog):
        backend.fail("GET", "/tiendas", httpx.ConnectError("refused"))
        with pytest.raises(CatalogUnavailable):
            asyncio.run(catalog.list_stores())

    def test_error_body_kept(self, backend, catalog):
        with pytest.raises(CatalogNotFound) as info:
            asyncio.run(catalog.get_product(999))
        assert info.value.body == {"message": "zapatillas 999 not found"}


class TestHelpers:
    def test_inactive_stores_filtered(self, backend, catalog):
        backend.add_store("Footlocker", "https://footlocker.es")
        backend.add_store("Closed", active=False)
        stores = asyncio.run(catalog.list_stores())
        assert [(s.name, s.url) for s in stores] == [("Footlocker", "https://footlocker.es")]

    def test_size_lookup_params(self, backend, catalog):
        sid = backend.add_store("Footlocker")
        lid = backend.add_listing(backend.add_product("SKU-1"), sid)
        backend.add_size(lid, "42", True)
        backend.add_size(lid, "43", False)

        async def scenario():
            return await catalog.find_sizes(lid), await catalog.find_sizes(lid, "43")

        all_sizes, one = asyncio.run(scenario())
        assert len(all_sizes) == 2
        assert [s["talla"] for s in one] == ["43"]
        assert backend.calls[-1] == ("GET", "/tallas", {"zapatilla_tienda_id": str(lid), "talla": "43"})
