"""
Reconnect module - automatic recovery after WiFi or server loss
"""

from .models import (ReconnectPolicy, ReconnectState, ReconnectStatus,
                     STATUS_DESCRIPTIONS, require_exhaustive)
from .orchestrator import ReconnectOrchestrator, RECONNECT_OPERATION

__all__ = ['ReconnectPolicy', 'ReconnectState', 'ReconnectStatus', 'STATUS_DESCRIPTIONS',
           'require_exhaustive', 'ReconnectOrchestrator', 'RECONNECT_OPERATION']
