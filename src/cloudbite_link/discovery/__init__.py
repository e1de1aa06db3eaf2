"""
Discovery module for locating a CloudBite server on the local network
"""

from .engine import DiscoveryEngine, DISCOVERY_OPERATION
from .models import DiscoveryProgress, DiscoveryResponse, ScanResult, ServerDescriptor
from .network_scan import NetworkScanner

__all__ = ['DiscoveryEngine', 'DISCOVERY_OPERATION', 'DiscoveryProgress', 'DiscoveryResponse',
           'ScanResult', 'ServerDescriptor', 'NetworkScanner']
