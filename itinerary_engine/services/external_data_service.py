import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from itinerary_engine.models.planning_models import ExternalDataQuery, ExternalDataResponse


@runtime_checkable
class ExternalDataProvider(Protocol):
    async def get_real_time_data(self, query: ExternalDataQuery) -> ExternalDataResponse: ...

    async def health_check(self) -> bool: ...

    def get_usage_stats(self) -> Dict[str, Any]: ...


class HttpExternalDataProvider:
    """Reference provider that POSTs queries as JSON to `{base_url}/query`.

    The endpoint is expected to answer with a JSON object; it becomes the
    response `data`. Rate-limit headers are passed through when present.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str] = None,
        max_concurrency: int = 10,
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.logger = logging.getLogger(__name__)
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=50)
        )
        self._rate_limiter = asyncio.Semaphore(max_concurrency)
        self._stats = {"requests": 0, "successes": 0, "failures": 0, "last_request_at": None}

    async def get_real_time_data(self, query: ExternalDataQuery) -> ExternalDataResponse:
        self._stats["requests"] += 1
        self._stats["last_request_at"] = datetime.utcnow().isoformat()
        try:
            async with self._rate_limiter:
                response = await self._post_query(query)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._stats["failures"] += 1
            self.logger.warning(
                "[provider] Query failed",
                extra={"provider": self.name, "type": query.type, "error": str(e)},
            )
            return ExternalDataResponse(success=False, source=self.name)

        self._stats["successes"] += 1
        return ExternalDataResponse(
            success=True,
            data=data if isinstance(data, dict) else {"value": data},
            source=self.name,
            rate_limit=self._rate_limit(response),
        )

    async def health_check(self) -> bool:
        try:
            response = await self.http_client.get(f"{self.base_url}/health", headers=self._headers())
        except httpx.HTTPError as e:
            self.logger.warning("[provider] Health check failed", extra={"provider": self.name, "error": str(e)})
            return False
        return response.status_code == 200

    def get_usage_stats(self) -> Dict[str, Any]:
        return dict(self._stats)

    async def aclose(self) -> None:
        await self.http_client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TransportError, httpx.TimeoutException)),
        reraise=True
    )
    async def _post_query(self, query: ExternalDataQuery) -> httpx.Response:
        response = await self.http_client.post(
            f"{self.base_url}/query",
            json=query.model_dump(mode="json"),
            headers=self._headers(),
        )
        response.raise_for_status()
        return response

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _rate_limit(response: httpx.Response) -> Optional[Dict[str, Any]]:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return None
        return {
            "remaining": int(remaining),
            "reset": response.headers.get("X-RateLimit-Reset"),
        }
