"""
Network scanning for CloudBite servers on the local /24 subnet
"""

import asyncio
import aiohttp
import time
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from .models import DiscoveryProgress, DiscoveryResponse, ScanResult
from ..events import EventStream
from ..http_helper import create_probe_session, join_url

logger = logging.getLogger(__name__)


def chunk_list(items: List[str], size: int) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def subnet_of(ip: str) -> str:
    """/24 prefix of a dotted IPv4 address ("192.168.1.1" -> "192.168.1")"""
    return ip.rsplit('.', 1)[0]


class NetworkScanner:
    """Gateway-based subnet detection plus chunked, prioritized HTTP probing"""

    def __init__(self, config: Dict, progress: EventStream):
        self.config = config
        self.progress = progress
        self.product_id = config.get('product_id', 'cloudbite-api')
        self.port = config.get('port', 3737)
        self.discovery_path = config.get('discovery_path', '/api/v1/discovery')
        self.gateway_candidates = config.get('gateway_candidates', ['192.168.1.1'])
        self.default_subnet = config.get('default_subnet', '192.168.1')
        self.pinned_subnet = config.get('subnet')
        self.priority_ranges = config.get('priority_ranges', [[1, 50], [100, 110], [200, 210]])
        self.chunk_size = int(config.get('chunk_size', 30))
        self.gateway_timeout = config.get('gateway_timeout', 0.5)
        self.probe_timeout = config.get('probe_timeout', 1.0)

    # ================== SUBNET DETECTION ==================

    async def detect_subnet(self) -> str:
        """
        Fire best-effort requests at common gateway addresses in parallel and
        take the /24 prefix of the first one that answers at all
        """
        if self.pinned_subnet:
            return self.pinned_subnet

        async with create_probe_session(self.gateway_timeout, limit=len(self.gateway_candidates)) as session:
            tasks = [asyncio.create_task(self._ping_gateway(session, gw)) for gw in self.gateway_candidates]
            try:
                for next_done in asyncio.as_completed(tasks):
                    gateway = await next_done
                    if gateway:
                        logger.info(f"[SCAN] Gateway {gateway} responded")
                        return subnet_of(gateway)
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(f"[SCAN] No gateway responded, using default subnet {self.default_subnet}")
        return self.default_subnet

    async def _ping_gateway(self, session: aiohttp.ClientSession, gateway: str) -> Optional[str]:
        try:
            async with session.get(f"http://{gateway}/", allow_redirects=False):
                return gateway
        except Exception as e:
            logger.debug(f"Gateway {gateway} not reachable: {e}")
            return None

    # ================== CANDIDATES ==================

    def build_candidates(self, subnet: str) -> List[str]:
        """Common server ranges first, then the rest of .1-.254 without repeats"""
        ordered_hosts = []
        seen = set()

        for start, end in self.priority_ranges:
            for host in range(start, end + 1):
                if host not in seen:
                    seen.add(host)
                    ordered_hosts.append(host)

        for host in range(1, 255):
            if host not in seen:
                ordered_hosts.append(host)

        return [f"{subnet}.{host}" for host in ordered_hosts]

    # ================== PROBING ==================

    async def check_discovery(self, session: aiohttp.ClientSession, base_url: str) -> bool:
        """True when base_url serves a discovery payload with our product id"""
        url = join_url(base_url, self.discovery_path)
        try:
            async with session.get(url, headers={'Accept': 'application/json'}) as response:
                if not 200 <= response.status < 300:
                    logger.debug(f"HTTP {response.status} for {url}")
                    return False
                data = await response.json(content_type=None)
            payload = DiscoveryResponse.model_validate(data)
            return payload.type == self.product_id
        except (ValidationError, ValueError) as e:
            logger.debug(f"Incompatible discovery payload from {url}: {e}")
            return False
        except Exception as e:
            logger.debug(f"Discovery probe failed for {url}: {e}")
            return False

    async def probe_server(self, session: aiohttp.ClientSession, ip: str) -> Optional[str]:
        """Probe one IP; returns its base URL if a compatible server answers"""
        url = f"http://{ip}:{self.port}/"
        if await self.check_discovery(session, url):
            logger.info(f"[OK] Compatible server at {ip}")
            return url
        return None

    async def scan_chunk(self, session: aiohttp.ClientSession, ips: List[str]) -> Optional[Tuple[str, str]]:
        """
        Probe all IPs of one chunk concurrently.

        The winner is the successful address with the lowest position in the chunk.
        It is returned as soon as every earlier address has settled; requests still
        outstanding at that point are cancelled and their results discarded.
        """
        tasks = [asyncio.create_task(self.probe_server(session, ip)) for ip in ips]
        try:
            pending = set(tasks)
            while pending:
                _, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for ip, task in zip(ips, tasks):
                    if not task.done():
                        break
                    if not task.cancelled() and task.exception() is None and task.result():
                        return ip, task.result()
            return None
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def scan(self) -> ScanResult:
        """Full scan: detect subnet, then probe chunks in priority order until found"""
        start_time = time.time()

        subnet = await self.detect_subnet()
        self._emit('subnet', f"Scanning network {subnet}.* on port {self.port}")

        candidates = self.build_candidates(subnet)
        chunks = chunk_list(candidates, self.chunk_size)
        ips_tested = 0

        async with create_probe_session(self.probe_timeout, limit=self.chunk_size) as session:
            for index, chunk in enumerate(chunks, start=1):
                found = await self.scan_chunk(session, chunk)
                ips_tested += len(chunk)

                if found:
                    ip, url = found
                    duration = time.time() - start_time
                    self._emit('found', f"Server found at {ip} ({url})", ip=ip)
                    logger.info(f"[PASS] Scan complete: server at {url} after {ips_tested} IPs in {duration:.1f}s")
                    return ScanResult(url, subnet, duration, ips_tested, index)

                self._emit('chunk', f"Scanned {ips_tested}/{len(candidates)} IPs (last: {chunk[-1]})", ip=chunk[-1])

        duration = time.time() - start_time
        self._emit('not_found', f"No server found on {subnet}.*")
        logger.warning(f"[SCAN] No compatible server on {subnet}.* ({ips_tested} IPs in {duration:.1f}s)")
        return ScanResult(None, subnet, duration, ips_tested, len(chunks))

    def _emit(self, phase: str, message: str, ip: Optional[str] = None) -> None:
        self.progress.emit(DiscoveryProgress(phase=phase, message=message, ip=ip))
