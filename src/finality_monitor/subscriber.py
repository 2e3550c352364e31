"""
Resilient L1 log subscription.

Keeps a filtered WebSocket log subscription alive for as long as the
monitor runs, hands matched logs to the correlator and reconnects after a
fixed delay whenever the subscription or the liveness probe fails.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, suppress
from enum import Enum
from typing import Any, Protocol

from .correlator import FinalityCorrelator
from .errors import MetricSubmissionError, SubscriptionError
from .metrics import DISPATCH_QUEUE_DROPPED, MetricsEmitter, tag
from .models import FilterCriteria, RawLogEntry
from .utils.stop_signal import wait_for_stop

logger = logging.getLogger(__name__)

SOURCE_CHAIN = "l1"


class ConnectionState(Enum):
    """Connection state of the subscriber."""
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class SubscriptionSession(Protocol):
    async def subscribe_logs(self, address: str, topics: list[str]) -> str: ...
    def iter_logs(self) -> AsyncIterator[Any]: ...
    async def block_number(self) -> int: ...


class SubscriptionClient(Protocol):
    def session(self) -> AbstractAsyncContextManager[SubscriptionSession]: ...


class ChainEventSubscriber:
    """
    Supervised log subscription on the L1 chain.

    The supervision loop cycles CONNECTING -> SUBSCRIBED -> BACKOFF until
    the stop event is set. Setup failures, transport failures and failed
    liveness probes all lead to BACKOFF, followed by a fixed-delay retry
    with no attempt limit. Logs missed while disconnected are not replayed.

    Matched logs are buffered in a bounded queue ahead of correlation; when
    the queue is full the oldest entry is dropped, and the running drop count
    is reported as a gauge, so the transport is never stalled.
    """

    def __init__(
        self,
        client: SubscriptionClient,
        criteria: FilterCriteria,
        correlator: FinalityCorrelator,
        reconnect_delay: float = 5,
        health_check_interval: float = 30,
        queue_size: int = 1000,
        emitter: MetricsEmitter | None = None
    ) -> None:
        """
        Initialize the subscriber.

        Args:
            client: L1 client providing subscription sessions
            criteria: Contract address and topic to subscribe to
            correlator: Receives every matched log
            reconnect_delay: Fixed delay before each reconnect, in seconds
            health_check_interval: Seconds between liveness probes
            queue_size: Maximum matched logs buffered ahead of correlation
            emitter: Receives the dropped-entry count when the queue overflows
        """
        self.client = client
        self.criteria = criteria
        self.correlator = correlator
        self.reconnect_delay = reconnect_delay
        self.health_check_interval = health_check_interval
        self.emitter = emitter

        self.state = ConnectionState.STOPPED
        self.queue: asyncio.Queue[RawLogEntry] = asyncio.Queue(maxsize=queue_size)

        self.connection_attempts = 0
        self.reconnects = 0
        self.logs_received = 0
        self.logs_dropped = 0
        self.dispatch_errors = 0

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Run the supervision loop until the stop event is set or the task
        is cancelled.

        Args:
            stop_event: Shared cancellation signal
        """
        logger.info("Starting finality tracker...")
        worker = asyncio.create_task(self._dispatch_worker())

        try:
            while not stop_event.is_set():
                self.state = ConnectionState.CONNECTING
                try:
                    await self._run_session(stop_event)
                except Exception as e:
                    logger.error(f"WebSocket connection error: {e}")

                if stop_event.is_set():
                    break

                self.state = ConnectionState.BACKOFF
                logger.info(f"Attempting to reconnect in {self.reconnect_delay} seconds...")
                if await wait_for_stop(stop_event, self.reconnect_delay):
                    break
                self.reconnects += 1
        finally:
            self.state = ConnectionState.STOPPED
            worker.cancel()
            with suppress(asyncio.CancelledError):
                await worker
            logger.info("Finality tracker stopped")

    async def _run_session(self, stop_event: asyncio.Event) -> None:
        """Hold one subscription until it fails or the stop event fires."""
        self.connection_attempts += 1

        async with self.client.session() as session:
            try:
                subscription_id = await session.subscribe_logs(
                    self.criteria.contract_address, [self.criteria.event_topic]
                )
            except Exception as e:
                raise SubscriptionError(f"failed to subscribe to logs: {e}") from e

            self.state = ConnectionState.SUBSCRIBED
            logger.info(
                f"Subscribed to VerifyBatchesTrustedAggregator events on contract "
                f"{self.criteria.contract_address} via WebSocket (id {subscription_id})"
            )

            tasks = {
                "transport": asyncio.create_task(self._consume(session)),
                "health": asyncio.create_task(self._health_check(session)),
                "stop": asyncio.create_task(stop_event.wait()),
            }
            try:
                done, _ = await asyncio.wait(
                    tasks.values(), return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                for task in tasks.values():
                    task.cancel()
                await asyncio.gather(*tasks.values(), return_exceptions=True)

            if tasks["stop"] in done:
                return

            for name in ("transport", "health"):
                task = tasks[name]
                if task in done and not task.cancelled():
                    error = task.exception()
                    if error is not None:
                        raise error
            raise SubscriptionError("subscription ended unexpectedly")

    async def _consume(self, session: SubscriptionSession) -> None:
        async for log in session.iter_logs():
            self._enqueue(log)
        raise SubscriptionError("WebSocket subscription stream closed")

    async def _health_check(self, session: SubscriptionSession) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            try:
                await session.block_number()
            except Exception as e:
                logger.error(f"WebSocket health check failed: {e}")
                raise SubscriptionError(f"WebSocket connection unhealthy: {e}") from e

    def _enqueue(self, log: Any) -> None:
        try:
            entry = RawLogEntry.from_log(log, source_chain=SOURCE_CHAIN)
        except (TypeError, ValueError) as e:
            logger.error(f"Dropping unreadable subscription log: {e}")
            return

        self.logs_received += 1
        if self.queue.full():
            dropped = self.queue.get_nowait()
            self.queue.task_done()
            self.logs_dropped += 1
            logger.warning(
                f"Dispatch queue full ({self.queue.maxsize}), dropped oldest log "
                f"from tx {dropped.transaction_hash}"
            )
            self._report_drop()
        self.queue.put_nowait(entry)

    def _report_drop(self) -> None:
        if self.emitter is None:
            return
        try:
            self.emitter.gauge(
                DISPATCH_QUEUE_DROPPED,
                self.logs_dropped,
                [tag("rollup_id", self.criteria.rollup_id)],
            )
        except MetricSubmissionError as e:
            logger.error(f"Failed to report dropped log: {e}")

    async def _dispatch_worker(self) -> None:
        while True:
            entry = await self.queue.get()
            try:
                await self.correlator.correlate(entry)
            except Exception as e:
                self.dispatch_errors += 1
                logger.error(f"Error processing log {entry}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    def get_stats(self) -> dict[str, Any]:
        """
        Get current status of the subscriber.

        Returns:
            Dictionary with status information
        """
        return {
            "state": self.state.value,
            "connection_attempts": self.connection_attempts,
            "reconnects": self.reconnects,
            "logs_received": self.logs_received,
            "logs_dropped": self.logs_dropped,
            "dispatch_errors": self.dispatch_errors,
            "queue_depth": self.queue.qsize(),
        }

    def log_stats(self) -> None:
        stats = self.get_stats()
        logger.info(
            f"Subscriber Stats: State={stats['state']}, "
            f"Attempts={stats['connection_attempts']}, "
            f"Reconnects={stats['reconnects']}, "
            f"Received={stats['logs_received']}, "
            f"Dropped={stats['logs_dropped']}, "
            f"Queue={stats['queue_depth']}"
        )
