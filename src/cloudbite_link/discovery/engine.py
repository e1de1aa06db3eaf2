"""
Discovery engine: cached/persisted server URL with revalidation, plus single-flight full scans
"""

import logging
import time
from typing import Dict, Optional

from .models import ScanResult, ServerDescriptor
from .network_scan import NetworkScanner
from ..errors import ServerNotFoundError
from ..events import EventStream
from ..http_helper import create_probe_session
from ..operations import OperationRegistry
from ..storage import SecureStorage, STORAGE_KEYS

logger = logging.getLogger(__name__)

DISCOVERY_OPERATION = 'discovery'


class DiscoveryEngine:
    """Locates a compatible CloudBite server and owns the last-known URL"""

    def __init__(self, config: Dict, storage: SecureStorage, operations: Optional[OperationRegistry] = None):
        self.config = config
        self.storage = storage
        self.operations = operations or OperationRegistry()
        self.progress: EventStream = EventStream('discovery')
        self.scanner = NetworkScanner(config, self.progress)

        self.quick_check_timeout = config.get('quick_check_timeout', 2.0)
        self.manual_test_timeout = config.get('manual_test_timeout', 5.0)
        self.min_discovery_interval = config.get('min_discovery_interval_seconds', 30)

        self.descriptor: Optional[ServerDescriptor] = None
        self.last_scan: Optional[ScanResult] = None
        self._last_discovery_time: Optional[float] = None

    @property
    def cached_url(self) -> Optional[str]:
        return self.descriptor.url if self.descriptor else None

    # ================== PUBLIC API ==================

    async def get_api_url(self) -> str:
        """
        Cached URL after a quick revalidation, else the persisted last-known URL
        after the same revalidation. Raises ServerNotFoundError if neither validates.
        """
        if self.descriptor:
            if await self.check_server(self.descriptor.url):
                return self.descriptor.url
            logger.info(f"Cached server {self.descriptor.url} failed revalidation")
            self.descriptor = None

        last_known = await self._load_persisted_url()
        if last_known and await self.check_server(last_known):
            self.descriptor = ServerDescriptor(last_known)
            return last_known

        raise ServerNotFoundError("No validated CloudBite server URL available")

    async def force_rediscovery(self) -> str:
        """Clear cached and persisted URL and run a full scan (joins a scan already in flight)"""
        if self.operations.is_running(DISCOVERY_OPERATION):
            logger.info("[SCAN] Discovery already in progress, waiting for it")
            url = await self.operations.join(DISCOVERY_OPERATION)
        elif self._rate_limited():
            logger.info(f"[SCAN] Last scan under {self.min_discovery_interval}s ago, "
                        f"reusing cached server {self.cached_url}")
            return self.cached_url
        else:
            url = await self.operations.run(DISCOVERY_OPERATION, self._rediscover)

        if not url:
            raise ServerNotFoundError("Could not find the CloudBite server on the local network")
        return url

    def cancel_discovery(self) -> bool:
        """Cancel a scan in flight; waiters joined on it see CancelledError"""
        if self.operations.cancel(DISCOVERY_OPERATION):
            logger.info("[SCAN] Discovery cancelled")
            return True
        return False

    async def get_last_known_url(self) -> Optional[str]:
        """Last known URL without any network call"""
        if self.descriptor:
            return self.descriptor.url
        return await self._load_persisted_url()

    async def clear_cache(self, persisted: bool = True) -> None:
        self.descriptor = None
        if not persisted:
            return
        try:
            await self.storage.remove_item(STORAGE_KEYS['LAST_KNOWN_API_URL'])
        except Exception as e:
            logger.warning(f"Failed to clear persisted server URL: {e}")

    async def set_server_url(self, url: Optional[str]) -> None:
        """Store a manually configured server URL; None forgets it"""
        if not url:
            await self.clear_cache()
            return
        self.descriptor = ServerDescriptor(url)
        await self._persist_url(url)

    async def check_server(self, url: str, timeout: Optional[float] = None) -> bool:
        """Bounded revalidation probe against the discovery contract"""
        async with create_probe_session(timeout or self.quick_check_timeout, limit=1) as session:
            return await self.scanner.check_discovery(session, url)

    async def test_connection(self, url: str) -> bool:
        """Manual "test connection" with the longer timeout"""
        return await self.check_server(url, timeout=self.manual_test_timeout)

    # ================== INTERNALS ==================

    def _rate_limited(self) -> bool:
        if not self.descriptor or self._last_discovery_time is None:
            return False
        return time.monotonic() - self._last_discovery_time < self.min_discovery_interval

    async def _rediscover(self) -> Optional[str]:
        self._last_discovery_time = time.monotonic()
        await self.clear_cache()

        logger.info("[SCAN] Starting full network discovery...")
        result = await self.scanner.scan()
        self.last_scan = result

        if result.url:
            self.descriptor = ServerDescriptor(result.url)
            await self._persist_url(result.url)
        return result.url

    async def _load_persisted_url(self) -> Optional[str]:
        try:
            return await self.storage.get_item(STORAGE_KEYS['LAST_KNOWN_API_URL'])
        except Exception as e:
            logger.warning(f"Failed to read persisted server URL: {e}")
            return None

    async def _persist_url(self, url: str) -> None:
        try:
            await self.storage.set_item(STORAGE_KEYS['LAST_KNOWN_API_URL'], url)
        except Exception as e:
            logger.warning(f"Failed to persist server URL {url}: {e}")
