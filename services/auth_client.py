# services/auth_client.py
import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from services.errors import AuthenticationFailed

logger = logging.getLogger(__name__)


class CredentialProvider:
    """
    Client-credentials bearer token, cached until it expires.

    No retry here: a failed exchange raises AuthenticationFailed and the
    caller decides what that means for the run.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        domain: str,
        client_id: str,
        client_secret: str,
        audience: str,
        scope: str = "admin:zapatillas",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http = http
        self.token_url = self._token_url(domain)
        self.client_id = client_id
        self.client_secret = client_secret
        self.audience = audience
        self.scope = scope
        self.clock = clock
        self._token: Optional[str] = None
        self._expiry = 0.0
        self._lock = asyncio.Lock()

    @staticmethod
    def _token_url(domain: str) -> str:
        domain = (domain or "").strip().rstrip("/")
        if not domain.startswith(("http://", "https://")):
            domain = f"https://{domain}"
        return f"{domain}/oauth/token"

    def _valid(self) -> bool:
        return bool(self._token) and self.clock() < self._expiry

    def invalidate(self) -> None:
        self._token = None
        self._expiry = 0.0

    async def get_credential(self) -> str:
        if self._valid():
            return self._token
        async with self._lock:
            # another task may have refreshed while we waited
            if self._valid():
                return self._token
            return await self._exchange()

    async def _exchange(self) -> str:
        logger.info("Requesting new catalog token from %s", self.token_url)
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "audience": self.audience,
            "grant_type": "client_credentials",
            "scope": self.scope,
        }
        try:
            resp = await self.http.post(self.token_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
            token = data["access_token"]
            expires_in = float(data.get("expires_in") or 0)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.error("Token exchange failed: %s", e)
            raise AuthenticationFailed(f"Could not obtain catalog token: {e}") from e

        if not token:
            raise AuthenticationFailed("Identity provider returned an empty access_token")

        self._token = token
        self._expiry = self.clock() + expires_in
        logger.info("Catalog token obtained (expires in %.0fs, type=%s)",
                    expires_in, data.get("token_type") or "N/A")
        return token
