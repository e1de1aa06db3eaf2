"""
Health module - periodic liveness checks of the connected server
"""

from .models import HealthState
from .monitor import HealthMonitor, HEALTH_CHECK_OPERATION

__all__ = ['HealthState', 'HealthMonitor', 'HEALTH_CHECK_OPERATION']
