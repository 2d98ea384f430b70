"""
httpx client for the Documents View metadata endpoints
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ApiClientError(Exception):
    """Non-2xx response or transport failure talking to the API"""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.errors = errors or {}
        super().__init__(message)


class DocumentsApiClient:
    """
    Async client acting as one user against the Documents View API.

    Usage:
        async with DocumentsApiClient("http://localhost:8000", user_id=1) as api:
            options = await api.get_policy_options(search="PLCY")
    """

    def __init__(
        self,
        base_url: str,
        user_id: int,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None
    ):
        headers = {"X-User-ID": str(user_id), "Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def __aenter__(self) -> 'DocumentsApiClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiClientError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            message = f"HTTP {response.status_code}"
            errors = {}
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                message = body["error"].get("message", message)
                errors = body["error"].get("errors") or {}
            elif isinstance(body, dict) and body.get("message"):
                message = body["message"]
            logger.warning(f"{method} {path} returned {response.status_code}: {message}")
            raise ApiClientError(message, status_code=response.status_code, errors=errors)

        return response.json()

    @staticmethod
    def _params(**params: Any) -> Dict[str, Any]:
        return {key: value for key, value in params.items() if value not in (None, '')}

    # ------------------------------------------
    # Options
    # ------------------------------------------

    async def get_policy_options(
        self,
        search: Optional[str] = None,
        producer_id: Optional[int] = None,
        limit: int = 25
    ) -> List[Dict[str, Any]]:
        params = self._params(search=search, producer_id=producer_id, limit=limit)
        return await self._request("GET", "/api/metadata/options/policies", params=params)

    async def get_loss_options(self, policy_id: int, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        params = self._params(search=search, limit=limit)
        return await self._request("GET", f"/api/metadata/options/losses/{policy_id}", params=params)

    async def get_claimant_options(self, loss_id: int, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        params = self._params(search=search, limit=limit)
        return await self._request("GET", f"/api/metadata/options/claimants/{loss_id}", params=params)

    async def get_producer_options(self, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        params = self._params(search=search, limit=limit)
        return await self._request("GET", "/api/metadata/options/producers", params=params)

    async def get_user_options(self, search: Optional[str] = None, limit: int = 25) -> List[Dict[str, Any]]:
        params = self._params(search=search, limit=limit)
        return await self._request("GET", "/api/metadata/options/users", params=params)

    # ------------------------------------------
    # Metadata
    # ------------------------------------------

    async def get_document_metadata(self, document_id: int) -> Dict[str, Any]:
        body = await self._request("GET", f"/api/documents/{document_id}/metadata")
        return body["data"]

    async def update_document_metadata(self, document_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        body = await self._request("PUT", f"/api/documents/{document_id}/metadata", json=data)
        return body["data"]
