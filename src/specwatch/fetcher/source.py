"""
Document sources - the only network dependency of the engine.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class DocumentSource(ABC):
    """Base class for interface description sources."""

    @abstractmethod
    async def get(self, url: str, timeout: float) -> bytes:
        """
        Retrieve the raw document at a URL.

        Args:
            url: Document URL
            timeout: Timeout in seconds

        Returns:
            Raw response body

        Raises:
            httpx.TimeoutException: If the request times out
            httpx.HTTPError: On connection errors or error status codes
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""


class HttpDocumentSource(DocumentSource):
    """
    HTTP document source backed by an httpx async client.

    The client is created lazily and reused across fetches.
    """

    def __init__(
        self,
        user_agent: str = "specwatch/0.3",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP document source.

        Args:
            user_agent: User-Agent header value
            transport: Optional transport (e.g. httpx.MockTransport in tests)
        """
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/json, application/yaml, text/yaml, */*",
                },
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def get(self, url: str, timeout: float) -> bytes:
        response = await self._get_client().get(url, timeout=timeout)
        response.raise_for_status()
        logger.debug(f"Fetched {len(response.content)} bytes from {url}")
        return response.content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
