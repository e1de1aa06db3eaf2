"""
Connection facade - merges device network, discovery, health and reconnect into one ConnectionState
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from ..api_client import ApiClient, ApiClientFactory
from ..config_loader import CONNECTION_MODES
from ..diagnostics import DiagnosticResult, NetworkDiagnostics
from ..discovery import DiscoveryEngine
from ..errors import NetworkUnavailableError, ServerNotFoundError, ServerUnhealthyError
from ..events import EventStream
from ..health import HealthMonitor, HealthState
from ..network import DeviceNetwork, NetworkStatus
from ..operations import OperationRegistry
from ..reconnect import ReconnectOrchestrator, ReconnectState, ReconnectStatus, require_exhaustive
from ..storage import SecureStorage, STORAGE_KEYS

logger = logging.getLogger(__name__)

INITIALIZE_OPERATION = 'initialize'
CONNECT_OPERATION = 'connect'

NO_WIFI_MESSAGE = "No WiFi connection"


@dataclass(frozen=True)
class ConnectionState:
    """Aggregate connection state published to the rest of the app"""
    is_searching: bool = False
    is_connected: bool = False
    is_healthy: bool = False
    has_wifi: bool = False
    server_url: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    mode: str = 'auto'
    needs_server_config: bool = False


class ConnectionFacade:
    """
    Long-lived connection manager. Build it once with create_connection_facade()
    and pass it to whatever needs the connection state.

    Reactive rules wired by initialize():
      - WiFi lost: mark disconnected, stop health monitoring and any reconnect
      - WiFi back while disconnected: start auto-reconnect
      - Server turns unhealthy while connected: drop the cached URL, stop
        monitoring and start auto-reconnect after a debounce
      - Reconnect reaches connected: reinitialize the API client and restart
        monitoring after a settle delay
      - Reconnect enters discovery: is_searching goes true at once
    """

    def __init__(self, config: Dict, network: DeviceNetwork, discovery: DiscoveryEngine,
                 health: HealthMonitor, reconnect: ReconnectOrchestrator,
                 api_clients: ApiClientFactory, storage: SecureStorage,
                 operations: Optional[OperationRegistry] = None,
                 diagnostics: Optional[NetworkDiagnostics] = None):
        self.config = config
        self.network = network
        self.discovery = discovery
        self.health = health
        self.reconnect = reconnect
        self.api_clients = api_clients
        self.storage = storage
        self.operations = operations or OperationRegistry()
        self.diagnostics = diagnostics or NetworkDiagnostics({}, network, discovery, health.health_path)

        self.debounce = config.get('debounce_seconds', 1.0)
        self.settle_delay = config.get('settle_delay_seconds', 1.0)
        self.server_config_after_attempts = int(config.get('server_config_after_attempts', 1))

        self._state = ConnectionState(mode=config.get('default_mode', 'auto'))
        self._changes: EventStream[ConnectionState] = EventStream('connection')
        self._unsubscribers: List[Callable[[], None]] = []
        self._initialized = False

        self._health_available = False
        self._reconnect_status: Optional[ReconnectStatus] = None

        self._debounce_task: Optional[asyncio.Task] = None
        self._settle_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # ================== PUBLIC API ==================

    def get_state(self) -> ConnectionState:
        return self._state

    def subscribe(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        """Listener receives the current state synchronously, then every change"""
        return self._changes.subscribe(listener, replay=self._state)

    async def initialize(self) -> ConnectionState:
        """Load the saved mode, make the first connection attempt, wire the rules. Idempotent."""
        if self._initialized:
            return self._state
        return await self.operations.run(INITIALIZE_OPERATION, self._initialize)

    async def check_connection(self, force_new: bool = False) -> ConnectionState:
        """
        One connection attempt for the current mode. Concurrent calls share it.
        force_new skips the last-known URL and rescans (auto mode only).
        """
        return await self.operations.run(CONNECT_OPERATION, lambda: self._connect(force_new))

    async def retry(self) -> ConnectionState:
        """Fresh connection attempt that bypasses the cached server URL"""
        logger.info("Connection retry requested")
        self.reconnect.stop_auto_reconnect()
        self._cancel_debounce()

        status = await self.network.fetch()
        if not status.has_wifi:
            self._update(has_wifi=False, is_searching=False, error=NO_WIFI_MESSAGE)
            return self._state
        self._update(has_wifi=True)

        if self._state.mode == 'auto':
            await self.discovery.clear_cache(persisted=False)
        return await self.check_connection(force_new=True)

    async def set_connection_mode(self, mode: str, url: Optional[str] = None) -> ConnectionState:
        """Persist the mode and, for manual/remote, the server URL to use instead of scanning"""
        if mode not in CONNECTION_MODES:
            raise ValueError(f"Unknown connection mode '{mode}', expected one of {CONNECTION_MODES}")

        await self.storage.set_item(STORAGE_KEYS['CONNECTION_MODE'], mode)
        if mode == 'auto':
            await self.storage.remove_item(STORAGE_KEYS['MANUAL_URL'])
        elif url:
            await self.storage.set_item(STORAGE_KEYS['MANUAL_URL'], url)
            await self.discovery.set_server_url(url)

        logger.info(f"Connection mode set to {mode}" + (f" ({url})" if url else ""))
        self._update(mode=mode)

        if self._initialized and self._state.has_wifi:
            return await self.check_connection()
        return self._state

    async def test_connection(self, url: str) -> bool:
        """Manual "test connection" against the discovery contract"""
        return await self.discovery.test_connection(url)

    async def run_diagnostics(self, url: Optional[str] = None) -> DiagnosticResult:
        """Network diagnostics against url, the connected server or the last known one"""
        return await self.diagnostics.run(url or self._state.server_url)

    async def get_api_client(self) -> ApiClient:
        """Client bound to the connected server; raises ServerNotFoundError while disconnected"""
        if not self._state.is_connected or not self._state.server_url:
            raise ServerNotFoundError("Not connected to a CloudBite server")
        return await self.api_clients.get_client(self._state.server_url)

    async def cleanup(self) -> None:
        """Unsubscribe from collaborators and stop everything. Safe to call repeatedly."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        self.health.stop_monitoring()
        self.reconnect.stop_auto_reconnect()
        self._cancel_debounce()
        self._cancel_settle()
        self.discovery.cancel_discovery()
        self.operations.cancel(CONNECT_OPERATION)

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        await self.api_clients.close()
        self._initialized = False

    # ================== CONNECTING ==================

    async def _initialize(self) -> ConnectionState:
        logger.info("Initializing connection manager...")
        await self._load_mode()

        status = await self.network.fetch()
        self._update(has_wifi=status.has_wifi)

        if status.has_wifi:
            await self.check_connection()
        else:
            logger.warning("No WiFi connection at startup")
            self._update(error=NO_WIFI_MESSAGE)

        self._unsubscribers = [
            self.network.subscribe(self._on_network),
            self.health.subscribe(self._on_health),
            self.reconnect.subscribe(self._on_reconnect),
        ]
        self._initialized = True
        logger.info(f"Connection manager ready (mode={self._state.mode}, "
                    f"connected={self._state.is_connected})")
        return self._state

    async def _load_mode(self) -> None:
        try:
            mode = await self.storage.get_item(STORAGE_KEYS['CONNECTION_MODE'])
            if mode and mode not in CONNECTION_MODES:
                logger.warning(f"Ignoring unknown saved connection mode '{mode}'")
                mode = None
            if mode and mode != 'auto':
                manual_url = await self.storage.get_item(STORAGE_KEYS['MANUAL_URL'])
                if manual_url:
                    await self.discovery.set_server_url(manual_url)
        except Exception as e:
            logger.warning(f"Failed to load saved connection mode: {e}")
            mode = None

        if mode:
            self._update(mode=mode)

    async def _connect(self, force_new: bool) -> ConnectionState:
        mode = self._state.mode
        self._update(is_searching=True, error=None)
        try:
            if not self._state.has_wifi:
                raise NetworkUnavailableError(NO_WIFI_MESSAGE)

            if mode == 'auto':
                url = await self._resolve_auto_url(force_new)
                await self.discovery.set_server_url(url)
            else:
                url = await self.discovery.get_last_known_url()
                if not url:
                    raise ServerNotFoundError(f"No {mode} server URL configured")

            if not await self.health.check_url(url):
                raise ServerUnhealthyError(f"Server at {url} is not responding")

            await self._on_connected(url)

        except asyncio.CancelledError:
            self._update(is_searching=False)
            raise
        except NetworkUnavailableError as e:
            self._update(is_connected=False, is_healthy=False, is_searching=False, error=str(e))
        except Exception as e:
            logger.warning(f"Connection attempt failed ({mode} mode): {e}")
            self._update(
                is_connected=False,
                is_healthy=False,
                is_searching=False,
                error=str(e) or e.__class__.__name__,
                attempts=self._state.attempts + 1
            )
        return self._state

    async def _resolve_auto_url(self, force_new: bool) -> str:
        if not force_new:
            last_known = await self.discovery.get_last_known_url()
            if last_known and await self.health.check_url(last_known, self.discovery.quick_check_timeout):
                logger.info(f"[OK] Last known server {last_known} is reachable")
                return last_known
        return await self.discovery.force_rediscovery()

    async def _on_connected(self, url: str) -> None:
        self.health.stop_monitoring()
        self._update(
            is_connected=True,
            is_healthy=True,
            is_searching=False,
            server_url=url,
            error=None,
            attempts=0
        )
        logger.info(f"[OK] Connected to CloudBite server at {url}")
        await self.api_clients.reinitialize(url)
        self._schedule_monitoring()

    # ================== REACTIVE RULES ==================

    def _on_network(self, status: NetworkStatus) -> None:
        previous_has_wifi = self._state.has_wifi

        if not status.has_wifi:
            self._handle_wifi_lost()
            return

        self._update(has_wifi=True)
        if previous_has_wifi:
            return

        logger.info(f"[NETWORK] Connectivity restored ({status.type})")
        if self._state.is_connected or self.reconnect.is_reconnecting:
            return
        if self.operations.is_running(CONNECT_OPERATION):
            return
        self._recover()

    def _handle_wifi_lost(self) -> None:
        if self._state.is_connected:
            logger.warning("[NETWORK] WiFi lost, marking server disconnected")
            self._update(has_wifi=False, is_connected=False, is_healthy=False,
                         is_searching=False, error=NO_WIFI_MESSAGE)
        else:
            self._update(has_wifi=False, is_searching=False)

        self.health.stop_monitoring()
        self.reconnect.stop_auto_reconnect()
        self._cancel_debounce()
        self._cancel_settle()
        self.discovery.cancel_discovery()

    def _on_health(self, state: HealthState) -> None:
        previous = self._health_available
        self._health_available = state.is_available
        if previous == state.is_available or not self._state.is_connected:
            return

        if state.is_available:
            self._update(is_healthy=True)
            return

        logger.warning(f"[HEALTH] Server became unhealthy: {state.message}")
        self._update(is_connected=False, is_healthy=False, server_url=None,
                     error=state.message or "Server is not responding")
        self.health.stop_monitoring()
        self._cancel_settle()
        self._schedule_debounced_reconnect()

    def _on_reconnect(self, state: ReconnectState) -> None:
        previous = self._reconnect_status
        self._reconnect_status = state.status
        if previous == state.status:
            return
        RECONNECT_HANDLERS[state.status](self, state)

    def _on_reconnect_idle(self, state: ReconnectState) -> None:
        if not self.operations.is_running(CONNECT_OPERATION):
            self._update(is_searching=False)

    def _on_reconnect_checking(self, state: ReconnectState) -> None:
        logger.debug(f"Reconnect progress: {state.status.value}")

    def _on_reconnect_discovery(self, state: ReconnectState) -> None:
        self._update(is_searching=True)

    def _on_reconnect_no_wifi(self, state: ReconnectState) -> None:
        self._update(is_searching=False, has_wifi=False, error=state.last_error or NO_WIFI_MESSAGE)

    def _on_reconnect_failed(self, state: ReconnectState) -> None:
        self._update(
            is_searching=False,
            is_connected=False,
            is_healthy=False,
            error=state.last_error,
            attempts=self._state.attempts + 1
        )

    def _on_reconnect_connected(self, state: ReconnectState) -> None:
        self._spawn(self._handle_reconnected())

    async def _handle_reconnected(self) -> None:
        try:
            url = await self.discovery.get_api_url()
        except ServerNotFoundError as e:
            logger.warning(f"Reconnected server failed confirmation: {e}")
            self._update(is_searching=False, error=str(e))
            return
        await self._on_connected(url)

    def _recover(self) -> None:
        """Auto mode reconnects through discovery; manual and remote modes only retry their URL"""
        if self._state.mode == 'auto':
            self._spawn(self.reconnect.start_auto_reconnect())
        else:
            self._spawn(self.check_connection())

    # ================== TIMERS ==================

    def _schedule_debounced_reconnect(self) -> None:
        if self._debounce_task and not self._debounce_task.done():
            return
        self._debounce_task = asyncio.create_task(self._debounced_reconnect())

    async def _debounced_reconnect(self) -> None:
        await self.discovery.clear_cache(persisted=False)
        await asyncio.sleep(self.debounce)

        if self._state.is_connected or not self._state.has_wifi:
            return
        if self.reconnect.is_reconnecting or self.operations.is_running(CONNECT_OPERATION):
            logger.debug("Recovery already running, skipping debounced reconnect")
            return
        self._recover()

    def _schedule_monitoring(self) -> None:
        self._cancel_settle()
        self._settle_task = asyncio.create_task(self._start_monitoring_after_settle())

    async def _start_monitoring_after_settle(self) -> None:
        await asyncio.sleep(self.settle_delay)
        if self._state.is_connected:
            self.health.start_monitoring()

    def _cancel_debounce(self) -> None:
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    def _cancel_settle(self) -> None:
        if self._settle_task and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background connection task failed: {task.exception()}")

    # ================== STATE ==================

    def _update(self, **changes) -> None:
        state = dataclasses.replace(self._state, **changes)
        needs_config = state.attempts >= self.server_config_after_attempts
        if needs_config != state.needs_server_config:
            state = dataclasses.replace(state, needs_server_config=needs_config)
        if state == self._state:
            return
        self._state = state
        self._changes.emit(state)


RECONNECT_HANDLERS = {
    ReconnectStatus.IDLE: ConnectionFacade._on_reconnect_idle,
    ReconnectStatus.CHECKING_NETWORK: ConnectionFacade._on_reconnect_checking,
    ReconnectStatus.CHECKING_HEALTH: ConnectionFacade._on_reconnect_checking,
    ReconnectStatus.RUNNING_DISCOVERY: ConnectionFacade._on_reconnect_discovery,
    ReconnectStatus.NO_WIFI: ConnectionFacade._on_reconnect_no_wifi,
    ReconnectStatus.FAILED: ConnectionFacade._on_reconnect_failed,
    ReconnectStatus.CONNECTED: ConnectionFacade._on_reconnect_connected,
}
require_exhaustive(RECONNECT_HANDLERS, 'ConnectionFacade')


def create_connection_facade(config: Dict) -> ConnectionFacade:
    """Build the connection object graph from a loaded configuration"""
    operations = OperationRegistry()
    storage = SecureStorage(config['storage']['service_name'])
    network = DeviceNetwork(config['network'])
    discovery = DiscoveryEngine(config['discovery'], storage, operations)
    health = HealthMonitor(config['health'], discovery, operations)
    reconnect = ReconnectOrchestrator(config['reconnect'], network, discovery, health, operations)
    api_clients = ApiClientFactory(config['api_client'])
    diagnostics = NetworkDiagnostics(config['diagnostics'], network, discovery,
                                     config['health']['health_path'])

    return ConnectionFacade(
        config['connection'], network, discovery, health, reconnect,
        api_clients, storage, operations, diagnostics
    )
