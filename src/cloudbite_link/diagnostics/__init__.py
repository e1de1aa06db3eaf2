"""
Diagnostics module for connection troubleshooting
"""

from .models import ApiProbeResult, DiagnosticResult
from .network_diagnostics import NetworkDiagnostics, format_diagnostic_result

__all__ = ['ApiProbeResult', 'DiagnosticResult', 'NetworkDiagnostics', 'format_diagnostic_result']
