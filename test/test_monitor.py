#!/usr/bin/env python3
"""Tests for the FinalityMonitor lifecycle."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from finality_monitor.config import L1ChainConfig, L2ChainConfig, MonitorConfig
from finality_monitor.monitor import FinalityMonitor


@pytest.fixture
def config():
    return MonitorConfig(
        l1_chain=L1ChainConfig(
            rpc_url="wss://eth.example.org",
            contract_address="0x5132a183e9f3cb7c848b0aac5ae0c4f0491b7ab2",
        ),
        l2_chain=L2ChainConfig(rpc_url="https://rpc.katana.example.org"),
        rollup_id=20,
    )


@pytest.fixture
def monitor(config):
    """Monitor with every network dependency mocked out."""
    l1_client = MagicMock()
    l1_client.close = AsyncMock()
    l2_client = MagicMock()
    l2_client.close = AsyncMock()
    resolver = MagicMock()
    resolver.close = AsyncMock()
    resolver.resolve = AsyncMock(return_value=0)
    return FinalityMonitor(
        config,
        l1_client=l1_client,
        l2_client=l2_client,
        resolver=resolver,
        emitter=MagicMock(),
    )


async def wait_for_shutdown(stop_event: asyncio.Event) -> None:
    await stop_event.wait()


class TestFinalityMonitor:
    """Test suite for monitor wiring and shutdown."""

    def test_wiring(self, monitor):
        assert monitor.correlator.criteria.rollup_id == 20
        assert monitor.subscriber.reconnect_delay == 5
        assert monitor.poller.interval == 300
        assert monitor.subscriber.emitter is monitor.emitter
        assert [s.vault_type for s in monitor.poller.snapshots.values()] == [
            "basefee", "l1fee", "operator_fee", "sequencer_fee"
        ]

    @pytest.mark.asyncio
    async def test_stop_shuts_down_both_loops(self, monitor):
        """Test that stop() returns both loops and releases clients."""
        monitor.subscriber.run = wait_for_shutdown
        monitor.poller.run = wait_for_shutdown

        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        monitor.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert monitor.shutdown_event.is_set()
        monitor.resolver.close.assert_awaited_once()
        monitor.l1_client.close.assert_awaited_once()
        monitor.l2_client.close.assert_awaited_once()
        monitor.emitter.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_loop_stops_monitor(self, monitor, caplog):
        """Test that a loop dying with an error shuts the service down."""
        monitor.subscriber.run = AsyncMock(side_effect=RuntimeError("boom"))
        monitor.poller.run = wait_for_shutdown

        await asyncio.wait_for(monitor.run(), timeout=3.0)

        assert monitor.shutdown_event.is_set()
        assert "subscriber task failed" in caplog.text

    @pytest.mark.asyncio
    async def test_close_errors_are_logged(self, monitor, caplog):
        monitor.resolver.close.side_effect = RuntimeError("already closed")

        await monitor.close()

        assert "Error during cleanup" in caplog.text
