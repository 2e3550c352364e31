#!/usr/bin/env python3
"""Finality correlation for the rollup finality monitor.

This module turns a matched VerifyBatchesTrustedAggregator log into finality
observations: it locates the OutputProposed logs emitted by the same
transaction, resolves the referenced L2 block timestamp and submits the
L1/L2 time delta as a gauge.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from .errors import ProtocolViolationError
from .metrics import L1_L2_TIME_DELTA, MetricsEmitter, tag
from .models import FilterCriteria, FinalityObservation, RawLogEntry

# Get logger for this module
logger = logging.getLogger(__name__)


class TransactionLogSource(Protocol):
    async def get_transaction_logs(self, tx_hash: str) -> list[Any]: ...


class FinalityCorrelator:
    """Correlates primary L1 logs with their nested OutputProposed logs.

    This class is responsible for:
    - Filtering primary logs by rollup id (other tenants share the contract)
    - Rejecting malformed logs as protocol violations
    - Processing every OutputProposed log in the transaction independently
    - Maintaining counters on processed, filtered and failed entries
    """

    def __init__(
        self,
        criteria: FilterCriteria,
        log_source: TransactionLogSource,
        resolve_timestamp: Callable[[int], Awaitable[int]],
        emitter: MetricsEmitter
    ) -> None:
        """Initialize the FinalityCorrelator.

        Args:
            criteria: Subscription filter holding the topics and rollup id
            log_source: Client able to fetch a transaction's logs
            resolve_timestamp: Coroutine returning an L2 block's timestamp
            emitter: Metrics emitter for the delta gauge
        """
        self.criteria = criteria
        self.log_source = log_source
        self.resolve_timestamp = resolve_timestamp
        self.emitter = emitter

        self.events_processed = 0
        self.events_filtered = 0
        self.events_invalid = 0
        self.errors = 0
        self.observations_emitted = 0

    async def correlate(self, entry: RawLogEntry) -> list[FinalityObservation]:
        """Process one matched primary log.

        Never raises: protocol violations and transient failures are logged
        and counted.

        Args:
            entry: Log that passed the subscription filter

        Returns:
            Observations that were successfully emitted
        """
        try:
            rollup_id = self._decode_rollup_id(entry)
        except ProtocolViolationError as e:
            self.events_invalid += 1
            logger.error(f"Dropping malformed log in tx {entry.transaction_hash}: {e}")
            return []

        if rollup_id != self.criteria.rollup_id:
            self.events_filtered += 1
            logger.debug(
                f"Ignoring event for rollupID {rollup_id} "
                f"(monitoring {self.criteria.rollup_id})"
            )
            return []

        self.events_processed += 1
        logger.info(
            f"Received VerifyBatchesTrustedAggregator event for rollupID {rollup_id} "
            f"in tx {entry.transaction_hash}"
        )

        try:
            receipt_logs = await self.log_source.get_transaction_logs(entry.transaction_hash)
        except Exception as e:
            self.errors += 1
            logger.error(
                f"Failed to get transaction receipt {entry.transaction_hash} "
                f"(rollupID {rollup_id}): {e}"
            )
            return []

        observations: list[FinalityObservation] = []
        for receipt_log in receipt_logs:
            try:
                secondary = RawLogEntry.from_log(receipt_log, source_chain=entry.source_chain)
            except (TypeError, ValueError) as e:
                self.events_invalid += 1
                logger.error(f"Unreadable log in tx {entry.transaction_hash}: {e}")
                continue

            if not secondary.topics or secondary.topics[0] != self.criteria.secondary_topic_bytes:
                continue

            try:
                observation = await self._process_output_proposed(secondary)
            except ProtocolViolationError as e:
                self.events_invalid += 1
                logger.error(
                    f"Error decoding OutputProposed log in tx {entry.transaction_hash}: {e}"
                )
                continue
            except Exception as e:
                self.errors += 1
                logger.error(
                    f"Error processing OutputProposed log in tx {entry.transaction_hash}: {e}"
                )
                continue

            observations.append(observation)

        return observations

    def _decode_rollup_id(self, entry: RawLogEntry) -> int:
        # topic[0] is the event signature, topic[1] the indexed rollupID
        if len(entry.topics) < 2:
            raise ProtocolViolationError(
                f"insufficient topics in log: {len(entry.topics)}"
            )
        # Compared at full width: high bits set means another tenant, not an alias
        return int.from_bytes(entry.topics[1], byteorder='big')

    async def _process_output_proposed(self, log: RawLogEntry) -> FinalityObservation:
        if len(log.topics) < 4:
            raise ProtocolViolationError(
                f"insufficient topics in OutputProposed log: {len(log.topics)}"
            )
        if len(log.data) < 32:
            raise ProtocolViolationError(
                f"insufficient data in OutputProposed log: {len(log.data)} bytes"
            )

        l2_block_number = int.from_bytes(log.topics[3], byteorder='big')
        l1_timestamp = int.from_bytes(log.data[:32], byteorder='big')
        logger.info(
            f"Found OutputProposed: L2BlockNumber={l2_block_number}, "
            f"L1Timestamp={l1_timestamp}"
        )

        l2_block_timestamp = await self.resolve_timestamp(l2_block_number)

        observation = FinalityObservation.build(
            rollup_id=self.criteria.rollup_id,
            l2_block_number=l2_block_number,
            l1_timestamp=l1_timestamp,
            l2_block_timestamp=l2_block_timestamp,
        )
        logger.info(
            f"L2BlockNumber: {l2_block_number}, L1Timestamp: {l1_timestamp}, "
            f"L2BlockTime: {l2_block_timestamp}, Delta: {observation.delta_seconds} seconds"
        )

        self.emitter.gauge(
            L1_L2_TIME_DELTA,
            observation.delta_seconds,
            [
                tag("l2_block_number", observation.l2_block_number),
                tag("rollup_id", observation.rollup_id),
            ],
        )
        self.observations_emitted += 1
        return observation

    def get_metrics(self) -> dict[str, int]:
        """Get current correlation counters.

        Returns:
            Dictionary of counter names to values
        """
        return {
            "events_processed": self.events_processed,
            "events_filtered": self.events_filtered,
            "events_invalid": self.events_invalid,
            "errors": self.errors,
            "observations_emitted": self.observations_emitted,
        }

    def log_metrics(self) -> None:
        """Log current correlation counters."""
        metrics = self.get_metrics()
        logger.info(
            f"Correlator Metrics: "
            f"Processed={metrics['events_processed']}, "
            f"Filtered={metrics['events_filtered']}, "
            f"Invalid={metrics['events_invalid']}, "
            f"Errors={metrics['errors']}, "
            f"Observations={metrics['observations_emitted']}"
        )
