"""
Finality monitor service.

This module wires the clients and components together and supervises the
subscription loop and the balance poller as two concurrent tasks.
"""

import asyncio
import logging

from .balance_poller import VaultBalancePoller
from .config import MonitorConfig
from .correlator import FinalityCorrelator
from .metrics import MetricsEmitter
from .subscriber import ChainEventSubscriber
from .timestamp_resolver import L2TimestampResolver
from .utils.chain_client import L1ChainClient, L2ChainClient

logger = logging.getLogger(__name__)


class FinalityMonitor:
    """
    Main service that runs the finality tracker and the balance monitor.

    This class focuses on wiring and lifecycle management; the event and
    balance logic lives in the subscriber, correlator and poller.
    """

    STATUS_LOG_INTERVAL = 300  # seconds

    def __init__(
        self,
        config: MonitorConfig,
        l1_client: L1ChainClient | None = None,
        l2_client: L2ChainClient | None = None,
        resolver: L2TimestampResolver | None = None,
        emitter: MetricsEmitter | None = None
    ) -> None:
        """
        Initialize the monitor.

        Clients not passed in are created from the configuration.

        Args:
            config: Monitor configuration
            l1_client: WebSocket subscription and HTTP receipt client for L1
            l2_client: HTTP client for rollup balance queries
            resolver: L2 block timestamp resolver
            emitter: Metrics emitter
        """
        self.config = config
        monitoring = config.monitoring

        self.l1_client = l1_client or L1ChainClient(
            config.l1_chain.rpc_url, request_timeout=monitoring.request_timeout
        )
        self.l2_client = l2_client or L2ChainClient(
            config.l2_chain.rpc_url, request_timeout=monitoring.request_timeout
        )
        self.resolver = resolver or L2TimestampResolver(
            config.l2_chain.rpc_url, request_timeout=monitoring.request_timeout
        )
        self.emitter = emitter or MetricsEmitter.connect(config.statsd.host, config.statsd.port)

        criteria = config.filter_criteria
        self.correlator = FinalityCorrelator(
            criteria=criteria,
            log_source=self.l1_client,
            resolve_timestamp=self.resolver.resolve,
            emitter=self.emitter,
        )
        self.subscriber = ChainEventSubscriber(
            client=self.l1_client,
            criteria=criteria,
            correlator=self.correlator,
            reconnect_delay=monitoring.reconnect_delay,
            health_check_interval=monitoring.health_check_interval,
            queue_size=monitoring.dispatch_queue_size,
            emitter=self.emitter,
        )
        self.poller = VaultBalancePoller(
            vaults=config.vaults,
            client=self.l2_client,
            emitter=self.emitter,
            rollup_id=config.rollup_id,
            interval=monitoring.balance_poll_interval,
        )

        self.running = False
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_env(cls) -> "FinalityMonitor":
        """
        Create a FinalityMonitor from environment variables.

        Raises:
            ValueError: If required environment variables are missing
        """
        config = MonitorConfig.from_env()
        config.log_config()
        return cls(config)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            self.subscriber.log_stats()
            self.correlator.log_metrics()

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has ended."""
        for name, task in tasks.items():
            if task.done() and name != "status":
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                else:
                    logger.error(f"{name} task exited unexpectedly")
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Signal the loops to stop and wait for every task to finish."""
        self.shutdown_event.set()
        for task in tasks.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)

    async def run(self) -> None:
        """Run both loops until stop() is called or a loop dies."""
        self.running = True
        logger.info(f"Monitoring rollup ID: {self.config.rollup_id}")
        logger.info(f"Contract address: {self.config.l1_chain.contract_address}")

        tasks: dict[str, asyncio.Task] = {}
        try:
            tasks = {
                "subscriber": asyncio.create_task(self.subscriber.run(self.shutdown_event)),
                "poller": asyncio.create_task(self.poller.run(self.shutdown_event)),
                "status": asyncio.create_task(self._periodic_status_logger()),
            }

            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break
        finally:
            self.running = False
            await self._cleanup_tasks(tasks)
            await self.close()
            logger.info("Finality monitor stopped")

    def stop(self) -> None:
        """Stop the monitor; both loops return promptly."""
        self.running = False
        self.shutdown_event.set()

    async def close(self) -> None:
        """Release network clients and the metrics socket."""
        try:
            await self.resolver.close()
            await self.l1_client.close()
            await self.l2_client.close()
            self.emitter.close()
        except Exception as e:
            logger.warning(f"Error during cleanup: {e}")
