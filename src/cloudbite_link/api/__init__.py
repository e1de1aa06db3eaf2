"""
API module for connection monitoring
"""

from .main_api import ConnectionStatusAPI
from .connection_routes import create_connection_routes

__all__ = ['ConnectionStatusAPI', 'create_connection_routes']
