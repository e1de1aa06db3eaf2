"""
Diagnostic report structures
"""

import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..network import NetworkStatus


@dataclass(frozen=True)
class ApiProbeResult:
    """Timed GET of the server health endpoint"""
    success: bool
    response_time_ms: Optional[int] = None
    status: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None  # "timeout", "connection_refused", "dns_failure", ...


@dataclass(frozen=True)
class DiagnosticResult:
    api_url: Optional[str]
    network: Optional[NetworkStatus]
    api_test: ApiProbeResult
    recommendations: Tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)
