"""
Tests for network diagnostics
"""

import asyncio
import errno
import socket

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from unittest.mock import AsyncMock, MagicMock

from cloudbite_link.diagnostics import (
    ApiProbeResult,
    DiagnosticResult,
    NetworkDiagnostics,
    format_diagnostic_result,
)
from cloudbite_link.diagnostics.network_diagnostics import classify_connect_error
from cloudbite_link.network import NetworkStatus

from conftest import OFFLINE, SERVER_URL, WIFI, FakeNetwork


def health_app(delay=0.0, status=200):
    async def handler(request):
        if delay:
            await asyncio.sleep(delay)
        return web.json_response({'status': 'ok'}, status=status)

    app = web.Application()
    app.router.add_get('/api/v1/health', handler)
    return app


def make_discovery(url=None):
    discovery = MagicMock()
    discovery.get_last_known_url = AsyncMock(return_value=url)
    return discovery


def make_diagnostics(config, network=None, last_known=None):
    return NetworkDiagnostics(config['diagnostics'], network or FakeNetwork(), make_discovery(last_known))


class TestProbe:
    """Tests for the timed health probe"""

    async def test_reachable_server(self, config):
        """Test a healthy answer is timed and has no recommendations"""
        async with TestServer(health_app()) as server:
            result = await make_diagnostics(config).run(str(server.make_url('/')))

        assert result.api_test.success is True
        assert result.api_test.status == 200
        assert result.api_test.response_time_ms is not None
        assert result.network == WIFI
        assert result.recommendations == ()

    async def test_client_error_status_still_reachable(self, config):
        """Test a 4xx answer means the server is up"""
        async with TestServer(health_app(status=404)) as server:
            result = await make_diagnostics(config).run(str(server.make_url('/')))

        assert result.api_test.success is True

    async def test_server_error(self, config):
        """Test a 5xx answer is reported with a recommendation"""
        async with TestServer(health_app(status=503)) as server:
            result = await make_diagnostics(config).run(str(server.make_url('/')))

        assert result.api_test.success is False
        assert result.api_test.error_code == 'server_error'
        assert result.api_test.error == "HTTP 503"
        assert any("server logs" in line for line in result.recommendations)

    async def test_timeout(self, config):
        """Test a slow server is reported as a timeout"""
        config['diagnostics']['timeout_seconds'] = 0.1
        async with TestServer(health_app(delay=0.5)) as server:
            result = await make_diagnostics(config).run(str(server.make_url('/')))

        assert result.api_test.success is False
        assert result.api_test.error_code == 'timeout'
        assert any("firewall" in line for line in result.recommendations)

    async def test_connection_refused(self, config):
        """Test a closed port is reported as refused"""
        result = await make_diagnostics(config).run('http://127.0.0.1:9/')

        assert result.api_test.success is False
        assert result.api_test.error_code == 'connection_refused'
        assert any("not responding" in line for line in result.recommendations)

    async def test_slow_response_recommendation(self, config):
        """Test answers slower than the threshold add a latency hint"""
        config['diagnostics']['slow_response_ms'] = 50
        async with TestServer(health_app(delay=0.1)) as server:
            result = await make_diagnostics(config).run(str(server.make_url('/')))

        assert result.api_test.success is True
        assert any("latency" in line for line in result.recommendations)


class TestRun:
    """Tests for the diagnostic pass"""

    async def test_uses_last_known_url(self, config):
        """Test the last known server is probed when no URL is given"""
        async with TestServer(health_app()) as server:
            url = str(server.make_url('/'))
            diagnostics = make_diagnostics(config, last_known=url)
            result = await diagnostics.run()

        assert result.api_url == url
        assert result.api_test.success is True

    async def test_no_known_server(self, config):
        """Test a missing URL is reported without probing"""
        result = await make_diagnostics(config).run()

        assert result.api_url is None
        assert result.api_test.error_code == 'no_server_url'
        assert any("configure the server URL" in line for line in result.recommendations)

    async def test_offline_device(self, config):
        """Test a device without network gets a WiFi recommendation"""
        result = await make_diagnostics(config, network=FakeNetwork(OFFLINE)).run()

        assert result.network == OFFLINE
        assert result.recommendations[0] == "No network connection. Check the WiFi connection."

    async def test_ethernet_device(self, config):
        """Test a non-WiFi connection is pointed out"""
        network = FakeNetwork(NetworkStatus(is_connected=True, type='ethernet'))
        result = await make_diagnostics(config, network=network).run()

        assert "not WiFi" in result.recommendations[0]

    async def test_network_read_failure(self, config):
        """Test an unreadable network status does not abort the run"""
        network = FakeNetwork()
        network.fetch = AsyncMock(side_effect=OSError("no adapters"))

        result = await make_diagnostics(config, network=network).run()

        assert result.network is None
        assert result.api_test.error_code == 'no_server_url'


class TestClassifyConnectError:
    """Tests for connection error codes"""

    @pytest.mark.parametrize("os_error,expected", [
        (socket.gaierror(-2, "Name or service not known"), 'dns_failure'),
        (ConnectionRefusedError(errno.ECONNREFUSED, "refused"), 'connection_refused'),
        (ConnectionResetError(errno.ECONNRESET, "reset"), 'connection_reset'),
        (OSError(errno.ETIMEDOUT, "timed out"), 'timeout'),
        (OSError(errno.EHOSTUNREACH, "no route"), 'connection_failed'),
        (None, 'connection_failed'),
    ])
    def test_classify(self, os_error, expected):
        """Test OS errors map to diagnostic codes"""
        assert classify_connect_error(os_error) == expected


class TestFormat:
    """Tests for the plain-text report"""

    def test_report_lists_failures_and_recommendations(self):
        """Test the report carries the probe error and each recommendation"""
        result = DiagnosticResult(
            api_url=SERVER_URL,
            network=WIFI,
            api_test=ApiProbeResult(False, 5001, error="No answer within 5.0s", error_code='timeout'),
            recommendations=("Timed out reaching the server.",),
            timestamp=1700000000.0,
        )

        report = format_diagnostic_result(result)

        assert report.startswith("=== NETWORK DIAGNOSTICS ===")
        assert f"Server URL: {SERVER_URL}" in report
        assert "- Type: wifi" in report
        assert "- Response time: 5001ms" in report
        assert "- Code: timeout" in report
        assert "RECOMMENDATIONS:\n- Timed out reaching the server.\n" in report

    def test_report_without_network(self):
        """Test a missing network status is shown as unavailable"""
        result = DiagnosticResult(api_url=None, network=None,
                                  api_test=ApiProbeResult(False, error_code='no_server_url'))

        report = format_diagnostic_result(result)

        assert "Server URL: unknown" in report
        assert "- Status: unavailable" in report
        assert "RECOMMENDATIONS" not in report
