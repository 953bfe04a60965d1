"""
backend_client.py - Async REST Client for the Hosted Backend

Thin aiohttp wrapper over the backend's PostgREST interface. Every failed
call raises BackendError so the sync queues can count it as a retry.
"""

import asyncio
import aiohttp
import logging
from typing import Any, Dict, List, Optional

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("BackendClient")


class BackendError(Exception):
    """A remote call failed (HTTP error, connection error or timeout)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self):
        if self.status is not None:
            return f"HTTP {self.status}: {self.message}"
        return self.message


class BackendClient:
    """
    REST client for the backend-as-a-service tables.

    A fresh aiohttp session is opened per call, so a client instance holds
    no open sockets between sync runs.
    """

    def __init__(self, base_url: str, api_key: str, access_token: Optional[str] = None,
                 timeout: int = 30):
        self.base_url = base_url.rstrip('/')
        self.rest_url = f"{self.base_url}/rest/v1"
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout

    def _headers(self, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if write:
            headers["Prefer"] = "return=minimal"
        return headers

    def set_access_token(self, access_token: Optional[str]):
        """Use a signed-in user's token instead of the anon key."""
        self.access_token = access_token

    async def _request(self, method: str, url: str, *, params: Dict = None,
                       json: Any = None, write: bool = False) -> Any:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(write),
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status >= 400:
                        error_text = await response.text()
                        raise BackendError(error_text or response.reason or "request failed",
                                           status=response.status)
                    if response.status == 204 or write:
                        return None
                    try:
                        return await response.json(content_type=None)
                    except ValueError:
                        raise BackendError(f"Invalid JSON from {method} {url}",
                                           status=response.status)

        except asyncio.TimeoutError:
            raise BackendError(f"{method} {url} timed out")
        except aiohttp.ClientError as e:
            raise BackendError(f"Connection error: {e}")

    # ==================== Table Operations ====================

    async def update(self, table: str, record_id: str, values: Dict):
        """Update one row of a table by id."""
        await self._request(
            "PATCH", f"{self.rest_url}/{table}",
            params={"id": f"eq.{record_id}"}, json=values, write=True
        )

    async def insert(self, table: str, rows: List[Dict]):
        """Insert rows into a table."""
        await self._request("POST", f"{self.rest_url}/{table}", json=rows, write=True)

    async def delete(self, table: str, record_id: str):
        """Delete one row of a table by id."""
        await self._request(
            "DELETE", f"{self.rest_url}/{table}",
            params={"id": f"eq.{record_id}"}, write=True
        )

    async def select(self, table: str, columns: str = "*") -> List[Dict]:
        """Select every visible row of a table."""
        result = await self._request(
            "GET", f"{self.rest_url}/{table}", params={"select": columns}
        )
        if result is None:
            return []
        if not isinstance(result, list):
            raise BackendError(f"Expected a list of rows from {table}, got {type(result).__name__}")
        return result

    # ==================== Health ====================

    async def ping(self) -> bool:
        """Check that the backend answers. Never raises."""
        try:
            await self._request("GET", f"{self.base_url}/auth/v1/health")
            return True
        except BackendError as e:
            logger.warning(f"Backend ping failed: {e}")
            return False
