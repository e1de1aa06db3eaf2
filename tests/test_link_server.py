"""
Tests for the process runner
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from cloudbite_link import main as main_module
from cloudbite_link.services import ConnectionState, LinkServer

from conftest import SERVER_URL, FakeNetwork


@pytest.fixture
def link(config):
    config['status_api']['enabled'] = False
    link = LinkServer(config=config)
    link.facade.network = FakeNetwork()
    link.facade.initialize = AsyncMock(return_value=ConnectionState(
        has_wifi=True, is_connected=True, is_healthy=True, server_url=SERVER_URL
    ))
    link.facade.cleanup = AsyncMock()
    return link


class TestLinkServer:
    """Tests for LinkServer start/stop"""

    async def test_request_stop_ends_start(self, link):
        """Test start() runs until a stop is requested"""
        run = asyncio.create_task(link.start())
        await asyncio.sleep(0.02)
        assert link.running is True
        assert run.done() is False

        link.request_stop()
        await asyncio.wait_for(run, timeout=1)

        link.facade.initialize.assert_awaited_once()

    async def test_stop_runs_once(self, link):
        """Test repeated stop() calls clean up a single time"""
        await link.stop()
        await link.stop()

        link.facade.cleanup.assert_awaited_once()
        assert link.running is False

    async def test_startup_failure_propagates(self, link):
        """Test an initialize error is raised to the caller"""
        link.facade.initialize = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await link.start()


class TestMain:
    """Tests for the entry point"""

    async def test_failed_start_exits_with_error(self):
        """Test a failing link returns exit code 1 and is still stopped"""
        link = MagicMock()
        link.start = AsyncMock(side_effect=RuntimeError("port in use"))
        link.stop = AsyncMock()

        with patch.object(main_module, 'LinkServer', return_value=link):
            assert await main_module.main('config/missing.yaml') == 1

        link.stop.assert_awaited_once()

    async def test_clean_run_exits_zero(self):
        """Test a start() that returns normally gives exit code 0"""
        link = MagicMock()
        link.start = AsyncMock()
        link.stop = AsyncMock()

        with patch.object(main_module, 'LinkServer', return_value=link):
            assert await main_module.main('config/config.yaml') == 0

        link.stop.assert_awaited_once()

    async def test_bad_config_exits_with_error(self):
        """Test a configuration error is reported without starting"""
        with patch.object(main_module, 'LinkServer', side_effect=FileNotFoundError("config.yaml")):
            assert await main_module.main('config/missing.yaml') == 1
