"""
Upstream client for API-Football
Plain HTTP with envelope validation; caching lives in sportshub.cache
"""
import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

from config.settings import settings
from sportshub.cache.metrics import ApiMetrics
from sportshub.errors import ConfigurationError, UpstreamError

load_dotenv()

logger = logging.getLogger("api_client")


class ApiFootballClient:
    """
    Thin client for the API-Football v3 REST API.

    ``fetch`` returns the envelope's ``response`` field. The blocking
    ``requests`` call runs in a worker thread so the event loop stays free.

    Usage:
        client = ApiFootballClient(api_key="...")
        fixtures = await client.fetch("/fixtures", {"id": 12345})
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://v3.football.api-sports.io",
        host: str = "v3.football.api-sports.io",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        metrics: Optional[ApiMetrics] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.host = host
        self.timeout = timeout
        self._session = session or requests.Session()
        self._metrics = metrics

    @classmethod
    def from_settings(cls, metrics: Optional[ApiMetrics] = None) -> "ApiFootballClient":
        """Build a client from the application settings."""
        if not settings.api_football_key:
            logger.warning("API_FOOTBALL_KEY not set - API-Football requests will fail")
        return cls(
            api_key=settings.api_football_key,
            base_url=settings.api_football_base_url,
            host=settings.api_football_host,
            timeout=settings.request_timeout_seconds,
            metrics=metrics,
        )

    def _get_headers(self) -> dict:
        """Get API authentication headers."""
        return {
            "x-rapidapi-key": self.api_key,
            "x-rapidapi-host": self.host,
        }

    async def fetch(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an endpoint and return the envelope's ``response``.

        Args:
            endpoint: API endpoint path (e.g., "/fixtures")
            params: Query parameters; None values are dropped

        Returns:
            The ``response`` field of the API envelope

        Raises:
            ConfigurationError: If no API key is configured
            UpstreamError: On network failure, non-2xx status or error envelope
        """
        return await asyncio.to_thread(self._fetch_sync, endpoint, params or {})

    def _fetch_sync(self, endpoint: str, params: Dict[str, Any]) -> Any:
        if not self.api_key:
            raise ConfigurationError("API_FOOTBALL_KEY not configured")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        query = {k: v for k, v in params.items() if v is not None}
        logger.info(f"Fetching {url} {query}")

        started = time.perf_counter()
        try:
            response = self._session.get(
                url,
                headers=self._get_headers(),
                params=query,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"API-Football request failed: {e}") from e
        finally:
            if self._metrics:
                self._metrics.log_api_call(endpoint, (time.perf_counter() - started) * 1000)

        if not response.ok:
            raise UpstreamError(
                f"API-Football error: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"API-Football returned invalid JSON: {e}",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise UpstreamError(
                "API-Football returned an unexpected envelope",
                status_code=response.status_code,
            )

        # A 200 can still carry errors (bad params, quota exhausted)
        errors = data.get("errors")
        if errors:
            raise UpstreamError(
                f"API-Football returned errors: {json.dumps(errors)}",
                status_code=response.status_code,
                errors=errors,
            )

        return data.get("response")

    def close(self) -> None:
        self._session.close()
