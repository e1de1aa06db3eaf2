"""
Outbound API client bound to the confirmed CloudBite server URL
"""

import logging
from typing import Dict, Optional

import aiohttp

from .http_helper import create_api_session, join_url

logger = logging.getLogger(__name__)


class ApiClient:
    """Thin aiohttp session wrapper; every path is resolved against base_url"""

    def __init__(self, base_url: str, session: aiohttp.ClientSession):
        self.base_url = base_url
        self.session = session

    def request(self, method: str, path: str, **kwargs):
        """
        Returns the aiohttp request context manager:

            async with client.request('GET', '/api/v1/menu') as response:
                data = await response.json()
        """
        return self.session.request(method, join_url(self.base_url, path), **kwargs)

    @property
    def closed(self) -> bool:
        return self.session.closed

    async def close(self):
        if not self.session.closed:
            await self.session.close()


class ApiClientFactory:
    """Owns the single ApiClient and swaps it when the server URL changes"""

    def __init__(self, config: Dict):
        self.timeout = config.get('timeout_seconds', 30)
        self.ssl_verify = config.get('ssl_verify', True)
        self.ca_cert_path = config.get('ca_cert_path')
        self._client: Optional[ApiClient] = None

    @property
    def client(self) -> Optional[ApiClient]:
        return self._client

    async def get_client(self, url: str) -> ApiClient:
        """Current client when it already targets url, otherwise a new one (the old session is closed)"""
        if self._client and self._client.base_url == url and not self._client.closed:
            return self._client
        if self._client:
            logger.info(f"API client switching from {self._client.base_url} to {url}")
            await self.close()
        return self._create(url)

    async def reinitialize(self, url: str) -> ApiClient:
        """Close the old session and open a new one against url"""
        await self.close()
        logger.info(f"API client initialized for {url}")
        return self._create(url)

    async def close(self):
        if self._client:
            await self._client.close()
            self._client = None

    def _create(self, url: str) -> ApiClient:
        session = create_api_session(
            url,
            timeout_seconds=self.timeout,
            ssl_verify=self.ssl_verify,
            ca_cert_path=self.ca_cert_path
        )
        self._client = ApiClient(url, session)
        return self._client
