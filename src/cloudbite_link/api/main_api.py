"""
Main FastAPI application setup

Local HTTP API exposing the connection state, the reconnect log and retry
"""

from fastapi import FastAPI
import logging

from .connection_routes import create_connection_routes

logger = logging.getLogger(__name__)


class ConnectionStatusAPI:
    """Local HTTP API for connection monitoring and control"""

    def __init__(self, facade, reconnect, health):
        self.facade = facade
        self.reconnect = reconnect
        self.health = health
        self.app = FastAPI(
            title="CloudBite Link",
            description="Local API for CloudBite server discovery and connection status",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        connection_router = create_connection_routes(self.facade, self.reconnect, self.health)
        self.app.include_router(connection_router)
