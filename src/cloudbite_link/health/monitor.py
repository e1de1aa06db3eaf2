"""
Health monitor for the connected CloudBite server
Polls GET /api/v1/health and debounces failures before reporting the server unavailable
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import aiohttp

from .models import HealthState
from ..events import EventStream
from ..http_helper import create_probe_session, join_url
from ..operations import OperationRegistry

logger = logging.getLogger(__name__)

HEALTH_CHECK_OPERATION = 'health-check'


class HealthMonitor:
    """Periodic and on-demand liveness probing of the last known server"""

    def __init__(self, config: Dict, discovery, operations: Optional[OperationRegistry] = None):
        self.config = config
        self.discovery = discovery
        self.operations = operations or OperationRegistry()

        self.health_path = config.get('health_path', '/api/v1/health')
        self.interval = config.get('interval_seconds', 15)
        self.timeout = config.get('timeout_seconds', 3.0)
        self.failure_threshold = int(config.get('failure_threshold', 2))

        self._state = HealthState()
        self._consecutive_failures = 0
        self._changes: EventStream[HealthState] = EventStream('health')
        self._task: Optional[asyncio.Task] = None

    def get_state(self) -> HealthState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def subscribe(self, listener: Callable[[HealthState], None]) -> Callable[[], None]:
        """Listener receives the current state immediately, then every update"""
        return self._changes.subscribe(listener, replay=self._state)

    # ================== MONITORING LOOP ==================

    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self) -> None:
        """(Re)start polling; restarting resets the failure counter"""
        self.stop_monitoring()
        self._consecutive_failures = 0
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(f"[HEALTH] Monitoring started (every {self.interval}s, "
                    f"unhealthy after {self.failure_threshold} failures)")

    def stop_monitoring(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self.operations.cancel(HEALTH_CHECK_OPERATION)
        logger.info("[HEALTH] Monitoring stopped")

    async def _monitor_loop(self):
        while True:
            try:
                await self.force_check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Health monitoring error: {e}")
            await asyncio.sleep(self.interval)

    # ================== CHECKS ==================

    async def force_check(self) -> bool:
        """
        One immediate probe. Overlapping calls share a single probe.
        Never raises: timeouts, errors and cancelled probes all resolve to False.
        """
        task = self.operations.start(HEALTH_CHECK_OPERATION, self._check_health)
        await asyncio.wait({task})

        if task.cancelled():
            return False
        if task.exception() is not None:
            logger.error(f"Health check failed unexpectedly: {task.exception()}")
            return False
        return task.result()

    async def check_url(self, url: str, timeout: Optional[float] = None) -> bool:
        """One-off probe of url that does not touch the monitor state"""
        ok, message = await self._probe(url, timeout or self.timeout)
        if not ok:
            logger.debug(f"Health probe of {url} failed: {message}")
        return ok

    async def _check_health(self) -> bool:
        url = await self.discovery.get_last_known_url()
        if not url:
            self._record_failure("Server not configured")
            return False

        ok, message = await self._probe(url, self.timeout)
        if ok:
            self._record_success(message)
        else:
            self._record_failure(message)
        return ok

    async def _probe(self, url: str, timeout: float) -> Tuple[bool, str]:
        health_url = join_url(url, self.health_path)
        try:
            async with create_probe_session(timeout, limit=1) as session:
                async with session.get(health_url, headers={'Accept': 'application/json'}) as response:
                    if 200 <= response.status < 300:
                        return True, "Connected to server"
                    return False, f"Server returned HTTP {response.status}"
        except asyncio.TimeoutError:
            return False, "Health check timed out"
        except aiohttp.ClientConnectorError:
            return False, "Cannot connect to server"
        except Exception as e:
            logger.debug(f"Health probe error for {health_url}: {e}")
            return False, "Connection error"

    # ================== STATE ==================

    def _record_success(self, message: str) -> None:
        self._consecutive_failures = 0
        self._set_state(HealthState(is_available=True, message=message, last_checked_at=time.time()))

    def _record_failure(self, message: str) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            available = False
        else:
            # Below the threshold a failure keeps the previous availability
            available = self._state.is_available
            logger.info(f"[HEALTH] Probe failed ({self._consecutive_failures}/{self.failure_threshold}): {message}")

        self._set_state(HealthState(is_available=available, message=message, last_checked_at=time.time()))

    def _set_state(self, state: HealthState) -> None:
        previous = self._state
        self._state = state
        if previous.is_available != state.is_available:
            if state.is_available:
                logger.info("[HEALTH] Server is healthy")
            else:
                logger.warning(f"[HEALTH] Server unhealthy after {self._consecutive_failures} "
                               f"consecutive failures: {state.message}")
        self._changes.emit(state)
