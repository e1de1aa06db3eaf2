"""
Automatic reconnect orchestrator
Runs network check -> last known server check -> full rediscovery after connectivity loss
"""

import asyncio
import dataclasses
import logging
import time
from typing import Callable, Dict, Optional

from .models import ReconnectPolicy, ReconnectState, ReconnectStatus
from ..errors import ServerUnhealthyError
from ..events import EventStream
from ..operations import OperationRegistry

logger = logging.getLogger(__name__)

RECONNECT_OPERATION = 'reconnect'


class ReconnectOrchestrator:
    """State machine producing a ReconnectState stream with a human-readable log"""

    def __init__(self, config: Dict, network, discovery, health,
                 operations: Optional[OperationRegistry] = None):
        self.config = config
        self.network = network
        self.discovery = discovery
        self.health = health
        self.operations = operations or OperationRegistry()

        self.policy = ReconnectPolicy.from_config(config)
        self.max_logs = int(config.get('max_logs', 50))
        self.quick_check_timeout = discovery.quick_check_timeout

        self._state = ReconnectState()
        self._changes: EventStream[ReconnectState] = EventStream('reconnect')

    def get_state(self) -> ReconnectState:
        return self._state

    @property
    def is_reconnecting(self) -> bool:
        return self._state.is_reconnecting or self.operations.is_running(RECONNECT_OPERATION)

    def subscribe(self, listener: Callable[[ReconnectState], None]) -> Callable[[], None]:
        """Listener receives the current state immediately, then every change"""
        return self._changes.subscribe(listener, replay=self._state)

    # ================== CONTROL ==================

    async def start_auto_reconnect(self, skip_quick_check: bool = False) -> ReconnectState:
        """
        Run one reconnect sequence and wait for it to finish.
        A call made while a run is in flight joins that run instead of starting another.
        skip_quick_check goes straight from the network check to rediscovery.
        """
        if self.operations.is_running(RECONNECT_OPERATION):
            logger.debug("Reconnect already in progress, joining it")
            task = self.operations.get(RECONNECT_OPERATION).task
        else:
            self._update(status=ReconnectStatus.IDLE, is_reconnecting=True, last_error=None, logs=())
            self._log("Starting automatic reconnection")
            task = self.operations.start(RECONNECT_OPERATION, lambda: self._run(skip_quick_check))

        await asyncio.wait({task})
        return self._state

    def stop_auto_reconnect(self) -> None:
        """Cancel the in-flight run; logs are kept until the next start"""
        if not self.operations.is_running(RECONNECT_OPERATION):
            if self._state.is_reconnecting:
                self._update(is_reconnecting=False)
            return

        self._log("Stopping reconnection")
        self.operations.cancel(RECONNECT_OPERATION)
        # Discovery is shielded under its own operation name and survives the run cancel
        self.discovery.cancel_discovery()
        self._update(status=ReconnectStatus.IDLE, is_reconnecting=False)

    # ================== STATE MACHINE ==================

    async def _run(self, skip_quick_check: bool) -> ReconnectStatus:
        outcome = ReconnectStatus.FAILED
        try:
            for cycle in range(1, self.policy.max_cycles + 1):
                outcome = await self._cycle(cycle, skip_quick_check)
                if outcome in (ReconnectStatus.CONNECTED, ReconnectStatus.NO_WIFI):
                    break
                if cycle < self.policy.max_cycles:
                    delay = self.policy.delay_for(cycle)
                    self._log(f"Cycle failed, retrying in {delay:.1f}s", 'error')
                    await asyncio.sleep(delay)
            return outcome
        finally:
            self._update(is_reconnecting=False)

    async def _cycle(self, cycle: int, skip_quick_check: bool) -> ReconnectStatus:
        try:
            self._log(f"Reconnect cycle #{cycle}")

            self._update(status=ReconnectStatus.CHECKING_NETWORK)
            network_status = await self.network.fetch()
            if not network_status.has_wifi:
                self._update(status=ReconnectStatus.NO_WIFI, is_reconnecting=False,
                             last_error="No active WiFi connection")
                self._log("No WiFi connection, waiting for the network to come back", 'error')
                return ReconnectStatus.NO_WIFI
            self._log(f"Network connected ({network_status.type})", 'success')

            if not skip_quick_check:
                self._update(status=ReconnectStatus.CHECKING_HEALTH)
                last_known = await self.discovery.get_last_known_url()
                if last_known:
                    self._log(f"Checking last known server {last_known}")
                    if await self.health.check_url(last_known, self.quick_check_timeout):
                        return self._connected(last_known)
                    self._log("Last known server is not responding", 'error')
                else:
                    self._log("No last known server")

            self._update(status=ReconnectStatus.RUNNING_DISCOVERY)
            self._log("Searching the local network for the server...")
            unsubscribe = self.discovery.progress.subscribe(lambda event: self._log(f"  {event.message}"))
            try:
                url = await self.discovery.force_rediscovery()
            finally:
                unsubscribe()

            self._log(f"Server found at {url}, verifying", 'success')
            if await self.health.check_url(url, self.quick_check_timeout):
                return self._connected(url)
            raise ServerUnhealthyError(f"Server at {url} was found but is not responding")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failed(str(e) or e.__class__.__name__)

    def _connected(self, url: str) -> ReconnectStatus:
        self._update(status=ReconnectStatus.CONNECTED, is_reconnecting=False, last_error=None, attempts=0)
        self._log(f"Connected to server {url}", 'success')
        return ReconnectStatus.CONNECTED

    def _failed(self, error: str) -> ReconnectStatus:
        self._update(status=ReconnectStatus.FAILED, last_error=error, attempts=self._state.attempts + 1)
        self._log(f"Reconnect attempt #{self._state.attempts} failed: {error}", 'error')
        return ReconnectStatus.FAILED

    # ================== STATE / LOG ==================

    def _log(self, message: str, level: str = 'info') -> None:
        entry = f"[{time.strftime('%H:%M:%S')}] {level.upper()}: {message}"
        logs = (self._state.logs + (entry,))[-self.max_logs:]
        if level == 'error':
            logger.warning(f"[RECONNECT] {message}")
        else:
            logger.info(f"[RECONNECT] {message}")
        self._update(logs=logs)

    def _update(self, **changes) -> None:
        state = dataclasses.replace(self._state, **changes)
        if state == self._state:
            return
        self._state = state
        self._changes.emit(state)
