"""Shared aiohttp JSON client used by every external service transport."""

import logging
from typing import Any, Dict, Optional

import aiohttp

from core.errors import TransportError

logger = logging.getLogger(__name__)


class JsonHttpClient:
    """Session-managing JSON client.

    Subclasses call ``_get``/``_post`` with paths relative to ``endpoint``.
    Failures of any kind surface as ``TransportError``.
    """

    service_name = "service"

    def __init__(self, endpoint: str, timeout: float = 30.0):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        logger.info(f"Initializing {self.service_name} client at {self.endpoint}")

    async def start(self) -> None:
        """Open the HTTP session."""
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        logger.info(f"Started {self.service_name} client")

    async def stop(self) -> None:
        """Close the HTTP session."""
        if self._session is None:
            return
        await self._session.close()
        self._session = None
        logger.info(f"Stopped {self.service_name} client")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def is_running(self) -> bool:
        return self._session is not None

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """Send a request and decode the JSON reply.

        Raises:
            TransportError: If the session is not started, the request fails,
                the server answers with an error status or the body is not JSON
        """
        if self._session is None:
            raise TransportError("Session not initialized - call start() first", endpoint=self.endpoint)

        url = f"{self.endpoint}{path}"
        try:
            async with self._session.request(method, url, json=body) as response:
                text = await response.text()
                if response.status >= 400:
                    raise TransportError(
                        f"{method} {path} returned HTTP {response.status}",
                        endpoint=self.endpoint,
                        details=text[:200],
                    )
                if not text:
                    return None
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {path} failed: {e}", endpoint=self.endpoint) from e
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON", endpoint=self.endpoint) from e

    async def _get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        return await self._request("POST", path, body)
