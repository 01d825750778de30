"""
Thin asynchronous client for the Replicate HTTP API.

Only transports requests and normalizes failures into ``UpstreamError``;
retries, polling and fallbacks live in the components that use it.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from .exceptions import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


class ReplicateClient:
    """
    Клиент для Replicate API.

    Поддерживает:
    - загрузку файлов (multipart) в хранилище Replicate
    - список версий модели
    - создание prediction и получение его статуса
    """

    def __init__(
        self,
        api_token: Optional[str],
        base_url: str = "https://api.replicate.com",
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )

    async def close(self):
        """Explicit client shutdown."""
        if self._owns_client:
            await self.client.aclose()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        if not self.api_token:
            raise ConfigurationError("REPLICATE_API_TOKEN is not set")
        headers = {"Authorization": f"Bearer {self.api_token}"}
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        headers = self._headers(kwargs.pop("headers", None))
        try:
            response = await self.client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.error("Replicate %s %s transport error: %s", method, url, type(e).__name__)
            raise UpstreamError(0, str(e), message=f"Upstream API unreachable: {e}") from e
        body = self._parse(response)
        if response.status_code < 200 or response.status_code >= 300:
            logger.error(
                "Replicate %s %s failed with %s: %s",
                method, url, response.status_code, str(body)[:1000],
            )
            raise UpstreamError(response.status_code, body)
        return body

    async def upload_file(self, filename: str, content: bytes, mime_type: str) -> Dict[str, Any]:
        """POST /v1/files as multipart form data."""
        files = {"content": (filename, content, mime_type)}
        return await self._request(
            "POST",
            f"{self.base_url}/v1/files",
            files=files,
            timeout=self.timeout,
        )

    async def list_versions(self, model_slug: str) -> Any:
        """GET /v1/models/{owner}/{name}/versions"""
        return await self._request("GET", f"{self.base_url}/v1/models/{model_slug}/versions")

    async def get_model(self, model_slug: str) -> Any:
        return await self._request("GET", f"{self.base_url}/v1/models/{model_slug}")

    async def create_prediction(
        self,
        version: str,
        input: Dict[str, Any],
        wait_seconds: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        POST /v1/predictions

        ``wait_seconds`` is sent as ``Prefer: wait=N`` so fast models can
        answer synchronously.
        """
        extra = {"Content-Type": "application/json"}
        if wait_seconds:
            extra["Prefer"] = f"wait={wait_seconds}"
        timeout = max(self.timeout, float(wait_seconds or 0) + 10.0)
        return await self._request(
            "POST",
            f"{self.base_url}/v1/predictions",
            json={"version": version, "input": input},
            headers=extra,
            timeout=timeout,
        )

    async def get_prediction(self, poll_url: str) -> Dict[str, Any]:
        return await self._request("GET", poll_url)
