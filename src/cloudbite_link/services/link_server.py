"""
Link Server - runs the connection facade and the local status API
"""

import asyncio
import logging
from typing import Dict, Optional

import uvicorn

from ..api import ConnectionStatusAPI
from ..config_loader import load_config, setup_logging
from .connection_service import ConnectionFacade, create_connection_facade

logger = logging.getLogger(__name__)


class LinkServer:
    """Owns the connection object graph for the lifetime of the process"""

    def __init__(self, config_path: Optional[str] = "config/config.yaml", config: Optional[Dict] = None):
        self.config = config if config is not None else load_config(config_path)
        setup_logging(self.config)

        self.facade: ConnectionFacade = create_connection_facade(self.config)
        self.api = ConnectionStatusAPI(self.facade, self.facade.reconnect, self.facade.health)

        self.running = False
        self._api_server: Optional[uvicorn.Server] = None
        self._shutdown = asyncio.Event()
        self._stopped = False

    async def start(self):
        """Start network polling, connect, then serve the status API until stopped"""
        logger.info("Starting CloudBite link...")

        try:
            self.facade.network.start()

            state = await self.facade.initialize()
            if state.is_connected:
                logger.info(f"[OK] Server ready at {state.server_url}")
            else:
                logger.warning(f"Not connected after startup: {state.error}")

            self.running = True

            status_api = self.config['status_api']
            if status_api.get('enabled', True):
                await self._start_api_server()
            else:
                logger.info("Status API disabled")
                await self._shutdown.wait()

        except Exception as e:
            logger.error(f"Link startup failed: {e}")
            raise

    def request_stop(self):
        """Make start() return; safe to call from a signal handler"""
        self._shutdown.set()
        if self._api_server:
            self._api_server.should_exit = True

    async def stop(self):
        """Stop all services gracefully. Only the first call does anything."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping CloudBite link...")
        self.running = False
        self.request_stop()

        await self.facade.cleanup()
        self.facade.network.stop()

        logger.info("CloudBite link stopped")

    async def _start_api_server(self):
        """Start the FastAPI server"""
        status_api = self.config['status_api']
        config = uvicorn.Config(
            self.api.app,
            host=status_api['host'],
            port=status_api['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        self._api_server = uvicorn.Server(config)
        if self._shutdown.is_set():
            return

        logger.info(f"Starting status API on {status_api['host']}:{status_api['port']}")
        logger.info(f"API documentation: http://localhost:{status_api['port']}/docs")

        await self._api_server.serve()
