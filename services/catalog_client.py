# services/catalog_client.py
import logging
from typing import Any, Dict, List, Optional

import httpx

from services.auth_client import CredentialProvider
from services.errors import (
    AuthenticationFailed,
    CatalogConflict,
    CatalogNotFound,
    CatalogRequestError,
    CatalogUnavailable,
    TransientCatalogError,
)
from services.models import Store

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


def _as_list(data: Any) -> List[Dict[str, Any]]:
    return data if isinstance(data, list) else []


class CatalogClient:
    """
    Bearer-authenticated access to the catalog backend.

    One auth retry on 401 and nothing more: backoff policy lives in the
    orchestrator and the engine.
    """

    def __init__(self, http: httpx.AsyncClient, base_url: str, credentials: CredentialProvider):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials

    async def _send(self, method: str, path: str, body: Any, params: Optional[dict]) -> httpx.Response:
        token = await self.credentials.get_credential()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        url = f"{self.base_url}{path}"
        try:
            return await self.http.request(method, url, json=body, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientCatalogError(method, path, detail=f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise CatalogUnavailable(method, path, detail=str(e) or type(e).__name__) from e

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        logger.debug("%s %s params=%s", method.upper(), path, params)
        resp = await self._send(method, path, body, params)

        if resp.status_code == 401:
            logger.warning("401 on %s %s, refreshing token and retrying once", method.upper(), path)
            self.credentials.invalidate()
            resp = await self._send(method, path, body, params)
            if resp.status_code == 401:
                raise AuthenticationFailed(f"Catalog rejected a fresh token on {method.upper()} {path}")

        if resp.is_success:
            return _body(resp)

        status, data = resp.status_code, _body(resp)
        logger.debug("%s %s -> %s %s", method.upper(), path, status, str(data)[:200])
        if status == 409:
            raise CatalogConflict(method, path, status, data)
        if status == 404:
            raise CatalogNotFound(method, path, status, data)
        if status in RETRYABLE_STATUS or status >= 500:
            raise TransientCatalogError(method, path, status, data)
        raise CatalogRequestError(method, path, status, data)

    # ----- stores -----

    async def list_stores(self) -> List[Store]:
        rows = _as_list(await self.request("GET", "/tiendas"))
        return [Store.from_api(r) for r in rows if r.get("activa")]

    async def get_store(self, store_id: int) -> Dict[str, Any]:
        return await self.request("GET", f"/tiendas/{store_id}")

    # ----- products (zapatillas) -----

    async def find_products_by_sku(self, sku: str) -> List[Dict[str, Any]]:
        return _as_list(await self.request("GET", "/zapatillas", params={"sku": sku}))

    async def get_product(self, product_id: int) -> Dict[str, Any]:
        return await self.request("GET", f"/zapatillas/{product_id}")

    async def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", "/zapatillas", data)

    async def patch_product(self, product_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"/zapatillas/{product_id}", changes)

    # ----- store listings (zapatillas-tienda) -----

    async def create_listing(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", "/zapatillas-tienda", data)

    async def list_listings(self, store_id: int) -> List[Dict[str, Any]]:
        return _as_list(await self.request("GET", "/zapatillas-tienda", params={"tienda_id": store_id}))

    async def delete_listing(self, listing_id: int) -> None:
        await self.request("DELETE", f"/zapatillas-tienda/{listing_id}")

    # ----- sizes (tallas) -----

    async def find_sizes(self, listing_id: int, label: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"zapatilla_tienda_id": listing_id}
        if label is not None:
            params["talla"] = label
        return _as_list(await self.request("GET", "/tallas", params=params))

    async def create_size(self, listing_id: int, label: str, available: bool) -> Dict[str, Any]:
        return await self.request(
            "POST",
            "/tallas",
            {"zapatilla_tienda_id": listing_id, "talla": label, "disponible": available},
        )

    async def patch_size(self, size_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("PATCH", f"/tallas/{size_id}", changes)

    async def delete_size(self, size_id: int) -> None:
        await self.request("DELETE", f"/tallas/{size_id}")
