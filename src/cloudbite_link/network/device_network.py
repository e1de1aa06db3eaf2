"""
Device connectivity status read from the OS network adapters
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import psutil

from ..events import EventStream

logger = logging.getLogger(__name__)

WIFI_PREFIXES = ('wl', 'wi-fi', 'wifi', 'wireless', 'airport')
ETHERNET_PREFIXES = ('eth', 'en', 'em', 'ethernet')
LOOPBACK_PREFIXES = ('lo', 'loopback')

# Preferred adapter type when several are up at once
TYPE_PRIORITY = {'wifi': 0, 'ethernet': 1, 'other': 2}


@dataclass(frozen=True)
class NetworkStatus:
    """Connectivity as reported by the device: is_connected plus adapter type"""
    is_connected: bool
    type: str  # "wifi", "ethernet", "other" or "none"

    @property
    def has_wifi(self) -> bool:
        """True when a WiFi or ethernet adapter carries the connection"""
        return self.is_connected and self.type in ('wifi', 'ethernet')


def classify_interface(name: str) -> str:
    lowered = name.lower()
    if lowered.startswith(WIFI_PREFIXES):
        return 'wifi'
    if lowered.startswith(ETHERNET_PREFIXES):
        return 'ethernet'
    return 'other'


def read_network_status() -> NetworkStatus:
    """Inspect adapters that are up, not loopback and carry an IPv4 address"""
    stats = psutil.net_if_stats()
    addrs = psutil.net_if_addrs()

    best_type = None
    for name, if_stats in stats.items():
        if not if_stats.isup or name.lower().startswith(LOOPBACK_PREFIXES):
            continue
        has_ipv4 = any(
            addr.family == socket.AF_INET and not addr.address.startswith('127.')
            for addr in addrs.get(name, [])
        )
        if not has_ipv4:
            continue

        if_type = classify_interface(name)
        if best_type is None or TYPE_PRIORITY[if_type] < TYPE_PRIORITY[best_type]:
            best_type = if_type

    if best_type is None:
        return NetworkStatus(is_connected=False, type='none')
    return NetworkStatus(is_connected=True, type=best_type)


class DeviceNetwork:
    """Polls adapter state and publishes NetworkStatus changes"""

    def __init__(self, config: Dict):
        self.poll_interval = config.get('poll_interval_seconds', 2.0)
        self._status: Optional[NetworkStatus] = None
        self._changes: EventStream[NetworkStatus] = EventStream('network')
        self._task: Optional[asyncio.Task] = None

    async def fetch(self) -> NetworkStatus:
        """Read the current status now; listeners are notified if it changed"""
        status = await asyncio.to_thread(read_network_status)
        self._update(status)
        return status

    def current(self) -> Optional[NetworkStatus]:
        return self._status

    def subscribe(self, listener: Callable[[NetworkStatus], None]) -> Callable[[], None]:
        return self._changes.subscribe(listener, replay=self._status)

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Network status polling started (every {self.poll_interval}s)")

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None
            logger.info("Network status polling stopped")

    async def _poll_loop(self):
        while True:
            try:
                await self.fetch()
            except Exception as e:
                logger.error(f"Network status poll failed: {e}")
            await asyncio.sleep(self.poll_interval)

    def _update(self, status: NetworkStatus) -> None:
        if status == self._status:
            return
        previous = self._status
        self._status = status
        logger.info(f"[NETWORK] Status changed: {previous} -> {status}")
        self._changes.emit(status)
