"""
Device network module - adapter connectivity status and change events
"""

from .device_network import DeviceNetwork, NetworkStatus, read_network_status

__all__ = ['DeviceNetwork', 'NetworkStatus', 'read_network_status']
