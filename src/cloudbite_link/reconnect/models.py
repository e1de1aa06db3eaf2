"""
Reconnect state machine data structures
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple


class ReconnectStatus(Enum):
    IDLE = "idle"
    CHECKING_NETWORK = "checking-network"
    CHECKING_HEALTH = "checking-health"
    RUNNING_DISCOVERY = "running-discovery"
    NO_WIFI = "no-wifi"
    FAILED = "failed"
    CONNECTED = "connected"


def require_exhaustive(handlers: Mapping, owner: str) -> None:
    """Fail at import time when a status-keyed table misses a ReconnectStatus"""
    missing = set(ReconnectStatus) - set(handlers)
    if missing:
        names = ', '.join(sorted(status.value for status in missing))
        raise RuntimeError(f"{owner} does not handle reconnect status: {names}")


STATUS_DESCRIPTIONS: Dict[ReconnectStatus, str] = {
    ReconnectStatus.IDLE: "Idle",
    ReconnectStatus.CHECKING_NETWORK: "Checking WiFi connection",
    ReconnectStatus.CHECKING_HEALTH: "Checking last known server",
    ReconnectStatus.RUNNING_DISCOVERY: "Searching for the server on the network",
    ReconnectStatus.NO_WIFI: "No WiFi connection",
    ReconnectStatus.FAILED: "Reconnection failed",
    ReconnectStatus.CONNECTED: "Connected to server",
}
require_exhaustive(STATUS_DESCRIPTIONS, 'STATUS_DESCRIPTIONS')


@dataclass(frozen=True)
class ReconnectState:
    status: ReconnectStatus = ReconnectStatus.IDLE
    is_reconnecting: bool = False
    attempts: int = 0
    last_error: Optional[str] = None
    logs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReconnectPolicy:
    """How many cycles one reconnect run makes and how long it waits between them"""
    max_cycles: int = 1
    initial_delay: float = 2.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_config(cls, config: Dict) -> 'ReconnectPolicy':
        return cls(
            max_cycles=int(config.get('max_cycles', 1)),
            initial_delay=float(config.get('initial_delay_seconds', 2.0)),
            backoff_multiplier=float(config.get('backoff_multiplier', 2.0)),
            max_delay=float(config.get('max_delay_seconds', 30.0)),
        )

    def delay_for(self, failed_cycles: int) -> float:
        """Wait after the given number of failed cycles (1-based)"""
        delay = self.initial_delay * (self.backoff_multiplier ** (failed_cycles - 1))
        return min(delay, self.max_delay)
