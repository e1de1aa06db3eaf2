"""
Discovery data structures and models
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class DiscoveryResponse(BaseModel):
    """
    Payload served by GET /api/v1/discovery
    Only type decides compatibility; the descriptive fields are kept as sent.
    """
    model_config = ConfigDict(extra='allow')

    type: str
    name: Any = None
    version: Any = None
    port: Any = None
    features: Any = None
    timestamp: Any = None


@dataclass(frozen=True)
class ServerDescriptor:
    """Validated base URL of a compatible server"""
    url: str
    discovered_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DiscoveryProgress:
    """Progress event published while a scan runs"""
    phase: str  # "subnet", "chunk", "found", "not_found", "error"
    message: str
    ip: Optional[str] = None


@dataclass
class ScanResult:
    """Results from one full scan"""
    url: Optional[str]
    subnet: str
    duration_seconds: float
    ips_tested: int
    chunks_scanned: int
