"""
Services module - connection facade and process runner
"""

from .connection_service import ConnectionFacade, ConnectionState, create_connection_facade
from .link_server import LinkServer

__all__ = ['ConnectionFacade', 'ConnectionState', 'create_connection_facade', 'LinkServer']
