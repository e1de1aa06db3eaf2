"""
Health monitoring data structures
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class HealthState:
    """Published liveness of the connected server"""
    is_available: bool = False
    message: Optional[str] = None
    last_checked_at: Optional[float] = None
