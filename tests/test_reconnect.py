"""
Tests for the automatic reconnect orchestrator
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from cloudbite_link.errors import ServerNotFoundError
from cloudbite_link.events import EventStream
from cloudbite_link.reconnect import (
    ReconnectOrchestrator,
    ReconnectPolicy,
    ReconnectStatus,
    STATUS_DESCRIPTIONS,
)

from conftest import OFFLINE, SERVER_URL, FakeNetwork


def make_discovery(last_known=None, found=SERVER_URL):
    discovery = MagicMock()
    discovery.quick_check_timeout = 2.0
    discovery.progress = EventStream('test-progress')
    discovery.get_last_known_url = AsyncMock(return_value=last_known)
    discovery.force_rediscovery = AsyncMock(return_value=found)
    return discovery


def make_health(healthy=True):
    health = MagicMock()
    health.check_url = AsyncMock(return_value=healthy)
    return health


def make_orchestrator(config, network=None, discovery=None, health=None):
    return ReconnectOrchestrator(
        config['reconnect'],
        network or FakeNetwork(),
        discovery or make_discovery(),
        health or make_health()
    )


class TestReconnectPolicy:
    """Tests for the backoff policy"""

    def test_delays_grow_and_cap(self):
        """Test exponential delays are capped at max_delay"""
        policy = ReconnectPolicy(max_cycles=5, initial_delay=2, backoff_multiplier=2, max_delay=5)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2, 4, 5]

    def test_from_config(self, config):
        """Test the default policy is a single cycle"""
        policy = ReconnectPolicy.from_config(config['reconnect'])
        assert policy.max_cycles == 1
        assert policy.max_delay == 30.0

    def test_every_status_has_a_description(self):
        """Test the description table covers the enum"""
        assert set(STATUS_DESCRIPTIONS) == set(ReconnectStatus)


class TestStartAutoReconnect:
    """Tests for the reconnect sequence"""

    async def test_last_known_server_answers(self, config):
        """Test a healthy last-known URL connects without discovery"""
        discovery = make_discovery(last_known=SERVER_URL)
        orchestrator = make_orchestrator(config, discovery=discovery)

        state = await orchestrator.start_auto_reconnect()

        assert state.status is ReconnectStatus.CONNECTED
        assert state.is_reconnecting is False
        assert state.attempts == 0
        discovery.force_rediscovery.assert_not_called()

    async def test_falls_back_to_discovery(self, config):
        """Test an unhealthy last-known URL leads to rediscovery"""
        discovery = make_discovery(last_known="http://192.168.1.20:3737/")
        health = make_health()
        health.check_url.side_effect = [False, True]
        orchestrator = make_orchestrator(config, discovery=discovery, health=health)

        state = await orchestrator.start_auto_reconnect()

        assert state.status is ReconnectStatus.CONNECTED
        discovery.force_rediscovery.assert_awaited_once()
        assert health.check_url.await_args_list[-1].args[0] == SERVER_URL

    async def test_skip_quick_check(self, config):
        """Test skip_quick_check goes straight to discovery"""
        discovery = make_discovery(last_known=SERVER_URL)
        orchestrator = make_orchestrator(config, discovery=discovery)

        await orchestrator.start_auto_reconnect(skip_quick_check=True)

        discovery.get_last_known_url.assert_not_called()
        discovery.force_rediscovery.assert_awaited_once()

    async def test_no_wifi(self, config):
        """Test missing connectivity ends the run in no-wifi"""
        discovery = make_discovery()
        orchestrator = make_orchestrator(config, network=FakeNetwork(OFFLINE), discovery=discovery)

        state = await orchestrator.start_auto_reconnect()

        assert state.status is ReconnectStatus.NO_WIFI
        assert state.is_reconnecting is False
        assert state.last_error == "No active WiFi connection"
        discovery.force_rediscovery.assert_not_called()

    async def test_discovery_failure_increments_attempts(self, config):
        """Test a failed cycle records the error and counts the attempt"""
        discovery = make_discovery()
        discovery.force_rediscovery.side_effect = ServerNotFoundError("nothing on 192.168.1.*")
        orchestrator = make_orchestrator(config, discovery=discovery)

        first = await orchestrator.start_auto_reconnect()
        second = await orchestrator.start_auto_reconnect()

        assert first.status is ReconnectStatus.FAILED
        assert first.last_error == "nothing on 192.168.1.*"
        assert first.is_reconnecting is False
        assert second.attempts == 2

    async def test_found_server_not_healthy_fails(self, config):
        """Test a discovered server that fails its health check is a failure"""
        health = make_health(healthy=False)
        orchestrator = make_orchestrator(config, health=health)

        state = await orchestrator.start_auto_reconnect()

        assert state.status is ReconnectStatus.FAILED
        assert "not responding" in state.last_error

    async def test_attempts_reset_on_connect(self, config):
        """Test a successful run resets the attempt counter"""
        discovery = make_discovery()
        discovery.force_rediscovery.side_effect = [ServerNotFoundError("none"), SERVER_URL]
        orchestrator = make_orchestrator(config, discovery=discovery)

        assert (await orchestrator.start_auto_reconnect()).attempts == 1
        assert (await orchestrator.start_auto_reconnect()).attempts == 0

    async def test_multiple_cycles_back_off(self, config):
        """Test max_cycles repeats failed cycles after the policy delay"""
        config['reconnect'].update(max_cycles=3, initial_delay_seconds=0.01, max_delay_seconds=0.02)
        discovery = make_discovery()
        discovery.force_rediscovery.side_effect = [ServerNotFoundError("a"), ServerNotFoundError("b"),
                                                   SERVER_URL]
        orchestrator = make_orchestrator(config, discovery=discovery)

        state = await orchestrator.start_auto_reconnect()

        assert state.status is ReconnectStatus.CONNECTED
        assert discovery.force_rediscovery.await_count == 3


class TestSingleFlight:
    """Tests for overlapping reconnect requests"""

    async def test_overlapping_calls_run_once(self, config):
        """Test concurrent start_auto_reconnect calls share one run"""
        discovery = make_discovery()

        async def slow_rediscovery():
            await asyncio.sleep(0.05)
            return SERVER_URL

        discovery.force_rediscovery.side_effect = slow_rediscovery
        orchestrator = make_orchestrator(config, discovery=discovery)
        toggles = []
        orchestrator.subscribe(lambda state: toggles.append(state.is_reconnecting))

        states = await asyncio.gather(*(orchestrator.start_auto_reconnect() for _ in range(3)))

        assert all(state.status is ReconnectStatus.CONNECTED for state in states)
        discovery.force_rediscovery.assert_awaited_once()
        rising_edges = sum(1 for before, after in zip(toggles, toggles[1:]) if not before and after)
        assert rising_edges == 1

    async def test_stop_cancels_run_and_keeps_logs(self, config):
        """Test stop_auto_reconnect cancels the in-flight run"""
        discovery = make_discovery()

        async def hang():
            await asyncio.sleep(10)

        discovery.force_rediscovery.side_effect = hang
        orchestrator = make_orchestrator(config, discovery=discovery)

        run = asyncio.create_task(orchestrator.start_auto_reconnect())
        await asyncio.sleep(0.02)
        assert orchestrator.get_state().status is ReconnectStatus.RUNNING_DISCOVERY

        orchestrator.stop_auto_reconnect()
        orchestrator.stop_auto_reconnect()
        state = await asyncio.wait_for(run, timeout=1)

        assert state.status is ReconnectStatus.IDLE
        assert state.is_reconnecting is False
        assert orchestrator.is_reconnecting is False
        assert any("Stopping reconnection" in entry for entry in state.logs)
        discovery.cancel_discovery.assert_called_once()


class TestLogs:
    """Tests for the reconnect log"""

    async def test_discovery_progress_is_logged(self, config):
        """Test progress events are copied into the log during discovery"""
        discovery = make_discovery()

        async def rediscover():
            discovery.progress.emit(MagicMock(message="Scanning network 192.168.1.* on port 3737"))
            return SERVER_URL

        discovery.force_rediscovery.side_effect = rediscover
        orchestrator = make_orchestrator(config, discovery=discovery)

        state = await orchestrator.start_auto_reconnect()

        assert any("Scanning network 192.168.1.*" in entry for entry in state.logs)
        assert len(discovery.progress) == 0

    async def test_logs_are_capped(self, config):
        """Test the log keeps only the newest entries"""
        config['reconnect']['max_logs'] = 5
        orchestrator = make_orchestrator(config)

        state = await orchestrator.start_auto_reconnect()

        assert len(state.logs) == 5
        assert "Connected to server" in state.logs[-1]

    async def test_log_entries_are_timestamped(self, config):
        """Test each entry carries a time and level"""
        orchestrator = make_orchestrator(config)

        state = await orchestrator.start_auto_reconnect()

        assert state.logs[0].startswith("[")
        assert "] INFO: Starting automatic reconnection" in state.logs[0]

    def test_subscribe_replays(self, config):
        """Test subscribers get the current state immediately"""
        orchestrator = make_orchestrator(config)
        received = []
        orchestrator.subscribe(received.append)
        assert received[0].status is ReconnectStatus.IDLE
