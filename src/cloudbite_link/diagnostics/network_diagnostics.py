"""
Network diagnostics for support screens
Reports device connectivity, a timed health probe of the server and what to try next
"""

import asyncio
import errno
import logging
import socket
import time
from datetime import datetime
from typing import Dict, List, Optional

import aiohttp

from .models import ApiProbeResult, DiagnosticResult
from ..http_helper import create_probe_session, join_url

logger = logging.getLogger(__name__)

NO_URL = 'no_server_url'
TIMEOUT = 'timeout'
CONNECTION_REFUSED = 'connection_refused'
CONNECTION_RESET = 'connection_reset'
DNS_FAILURE = 'dns_failure'
CONNECTION_FAILED = 'connection_failed'
SERVER_ERROR = 'server_error'
CLIENT_ERROR = 'client_error'

RECOMMENDATIONS = {
    NO_URL: ["No server address is known yet. Run a search or configure the server URL."],
    TIMEOUT: ["Timed out reaching the server. Possible local network or firewall problem."],
    CONNECTION_REFUSED: ["The CloudBite server is not responding. Check that it is running."],
    DNS_FAILURE: ["The server address could not be resolved. Check the configured server URL."],
    SERVER_ERROR: ["The server answered with an error. Check the server logs."],
    CONNECTION_RESET: [
        "The connection is being interrupted. Possible causes:",
        "- Firewall or antivirus interfering",
        "- Problems with the network adapter",
        "- Power saving settings on the network adapter",
        "- Outdated network driver",
    ],
}


class NetworkDiagnostics:
    """Runs one diagnostic pass on demand; holds no state between runs"""

    def __init__(self, config: Dict, network, discovery, health_path: str = '/api/v1/health'):
        self.network = network
        self.discovery = discovery
        self.health_path = health_path
        self.timeout = config.get('timeout_seconds', 5.0)
        self.slow_response_ms = config.get('slow_response_ms', 3000)

    async def run(self, url: Optional[str] = None) -> DiagnosticResult:
        """Diagnose the device network and the given server, or the last known one"""
        logger.info("[DIAG] Running network diagnostics...")

        try:
            network = await self.network.fetch()
        except Exception as e:
            logger.error(f"[DIAG] Could not read device network status: {e}")
            network = None

        if url is None:
            url = await self.discovery.get_last_known_url()

        if url:
            api_test = await self.probe(url)
        else:
            api_test = ApiProbeResult(success=False, error="No server URL known", error_code=NO_URL)

        result = DiagnosticResult(
            api_url=url,
            network=network,
            api_test=api_test,
            recommendations=tuple(self.recommend(network, api_test)),
        )
        logger.info(f"[DIAG] Done: api_ok={api_test.success} code={api_test.error_code} "
                    f"time={api_test.response_time_ms}ms")
        return result

    async def probe(self, url: str) -> ApiProbeResult:
        """
        GET the health endpoint and time it. Any status below 500 counts as
        reachable, since the question is whether the server answers at all.
        """
        health_url = join_url(url, self.health_path)
        started = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            async with create_probe_session(self.timeout, limit=1) as session:
                async with session.get(health_url) as response:
                    if response.status >= 500:
                        return ApiProbeResult(False, elapsed(), response.status,
                                              f"HTTP {response.status}", SERVER_ERROR)
                    return ApiProbeResult(True, elapsed(), response.status)
        except asyncio.TimeoutError:
            return ApiProbeResult(False, elapsed(), error=f"No answer within {self.timeout}s",
                                  error_code=TIMEOUT)
        except aiohttp.ClientConnectorError as e:
            return ApiProbeResult(False, elapsed(), error=str(e), error_code=classify_connect_error(e.os_error))
        except (aiohttp.ServerDisconnectedError, ConnectionResetError) as e:
            return ApiProbeResult(False, elapsed(), error=str(e) or "Server disconnected",
                                  error_code=CONNECTION_RESET)
        except aiohttp.ClientError as e:
            logger.debug(f"[DIAG] Probe of {health_url} failed: {e}")
            return ApiProbeResult(False, elapsed(), error=str(e), error_code=CLIENT_ERROR)

    def recommend(self, network, api_test: ApiProbeResult) -> List[str]:
        recommendations = []

        if network is not None and not network.is_connected:
            recommendations.append("No network connection. Check the WiFi connection.")
        elif network is not None and not network.has_wifi:
            recommendations.append(
                f"Connected over {network.type}, not WiFi. Local discovery needs the same "
                "network as the CloudBite server."
            )

        if not api_test.success:
            recommendations.extend(RECOMMENDATIONS.get(api_test.error_code, []))

        if api_test.response_time_ms is not None and api_test.response_time_ms > self.slow_response_ms:
            recommendations.append(
                "Network latency is very high. Move closer to the router or use a more stable connection."
            )

        return recommendations


def classify_connect_error(os_error: Optional[OSError]) -> str:
    if isinstance(os_error, socket.gaierror):
        return DNS_FAILURE
    code = getattr(os_error, 'errno', None)
    if code == errno.ECONNREFUSED:
        return CONNECTION_REFUSED
    if code == errno.ECONNRESET:
        return CONNECTION_RESET
    if code == errno.ETIMEDOUT:
        return TIMEOUT
    return CONNECTION_FAILED


def format_diagnostic_result(result: DiagnosticResult) -> str:
    """Plain-text report for support tickets"""
    yes_no = {True: "yes", False: "no"}
    lines = [
        "=== NETWORK DIAGNOSTICS ===",
        "",
        f"Date: {datetime.fromtimestamp(result.timestamp).strftime('%Y-%m-%d %H:%M:%S')}",
        f"Server URL: {result.api_url or 'unknown'}",
        "",
        "NETWORK:",
    ]
    if result.network is None:
        lines.append("- Status: unavailable")
    else:
        lines.append(f"- Connected: {yes_no[result.network.is_connected]}")
        lines.append(f"- Type: {result.network.type}")

    api = result.api_test
    lines += ["", "SERVER TEST:", f"- Success: {yes_no[api.success]}"]
    if api.response_time_ms is not None:
        lines.append(f"- Response time: {api.response_time_ms}ms")
    if api.status is not None:
        lines.append(f"- HTTP status: {api.status}")
    if api.error:
        lines.append(f"- Error: {api.error}")
        lines.append(f"- Code: {api.error_code or 'n/a'}")

    if result.recommendations:
        lines += ["", "RECOMMENDATIONS:"]
        for recommendation in result.recommendations:
            lines.append(f"- {recommendation}")

    return "\n".join(lines) + "\n"
