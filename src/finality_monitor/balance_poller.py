"""
Periodic fee vault balance sampling.

Samples every configured vault on a fixed timer, diffs against the previous
sample and emits both the balance and the delta as gauges.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from .errors import BalanceQueryError, MetricSubmissionError
from .metrics import MetricsEmitter, tag, vault_balance_metric, vault_delta_metric
from .models import VaultConfig, VaultSnapshot
from .utils.stop_signal import wait_for_stop

logger = logging.getLogger(__name__)


class BalanceSource(Protocol):
    async def get_balance(self, address: str) -> int: ...


class VaultBalancePoller:
    """
    Timer-driven balance monitor for a fixed set of vaults.

    Snapshots are owned by this class and live for the lifetime of the
    process. A failed balance query ends the current cycle early; the next
    scheduled cycle runs normally.
    """

    def __init__(
        self,
        vaults: Sequence[VaultConfig],
        client: BalanceSource,
        emitter: MetricsEmitter,
        rollup_id: int,
        interval: float = 300
    ) -> None:
        """
        Initialize the poller.

        Args:
            vaults: Vault address and category pairs to monitor
            client: L2 client used for balance queries
            emitter: Metrics emitter for the balance and delta gauges
            rollup_id: Rollup identifier added to every metric
            interval: Seconds between poll cycles
        """
        self.client = client
        self.emitter = emitter
        self.rollup_id = rollup_id
        self.interval = interval

        self.snapshots: dict[str, VaultSnapshot] = {
            vault.address: VaultSnapshot(address=vault.address, vault_type=vault.vault_type)
            for vault in vaults
        }
        self.cycles_completed = 0
        self.cycles_failed = 0

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Sample immediately, then every ``interval`` seconds until stopped.

        Args:
            stop_event: Shared cancellation signal
        """
        logger.info("Starting balance monitor...")

        if not await self.poll_once():
            logger.error("Error in initial balance check")

        while not await wait_for_stop(stop_event, self.interval):
            await self.poll_once()

        logger.info("Balance monitor stopped")

    async def poll_once(self) -> bool:
        """
        Run one poll cycle over every vault.

        Returns:
            True if every vault was sampled, False if the cycle ended early
        """
        logger.info("Monitoring vault balances...")
        for snapshot in self.snapshots.values():
            try:
                await self._sample(snapshot)
            except BalanceQueryError as e:
                self.cycles_failed += 1
                logger.error(
                    f"Error monitoring balances (rollupID {self.rollup_id}): {e}"
                )
                return False

        self.cycles_completed += 1
        return True

    async def _sample(self, snapshot: VaultSnapshot) -> None:
        snapshot.shift()
        balance = await self.client.get_balance(snapshot.address)
        snapshot.update(balance)
        logger.info(
            f"Vault {snapshot.address}: Previous={snapshot.previous_balance}, "
            f"Current={snapshot.current_balance}"
        )

        self._send_metrics(snapshot)

    def _send_metrics(self, snapshot: VaultSnapshot) -> None:
        tags = [
            tag("vault_type", snapshot.vault_type),
            tag("vault_address", snapshot.address),
            tag("rollup_id", self.rollup_id),
        ]

        gauges = (
            (vault_balance_metric(snapshot.vault_type), snapshot.current_balance),
            (vault_delta_metric(snapshot.vault_type, self.interval), snapshot.delta_balance),
        )
        # A failed balance gauge still sends the delta and vice versa
        for name, value in gauges:
            try:
                self.emitter.gauge(name, value, tags)
            except MetricSubmissionError as e:
                logger.error(f"Error sending {name} for vault {snapshot.address}: {e}")
        logger.info(
            f"Vault {snapshot.address}: Delta={snapshot.delta_balance} (in {int(self.interval)}s)"
        )
