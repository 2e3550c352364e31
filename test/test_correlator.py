#!/usr/bin/env python3
"""Unit tests for the FinalityCorrelator module."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from finality_monitor.config import OUTPUT_PROPOSED_TOPIC, VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC
from finality_monitor.correlator import FinalityCorrelator
from finality_monitor.errors import MetricSubmissionError, TimestampResolutionError
from finality_monitor.metrics import L1_L2_TIME_DELTA
from finality_monitor.models import FilterCriteria, RawLogEntry

ROLLUP_ID = 20
TX_HASH = '0x' + 'ab' * 32
CONTRACT = "0x5132A183E9F3CB7C848b0AAC5Ae0c4f0491B7aB2"


def word(value: int) -> bytes:
    """Encode an integer as a 32-byte big-endian word."""
    return value.to_bytes(32, byteorder='big')


def primary_log(rollup_id: int = ROLLUP_ID, topics: list | None = None) -> RawLogEntry:
    """Build a VerifyBatchesTrustedAggregator log as delivered by the subscription."""
    if topics is None:
        topics = [
            VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC,
            '0x' + word(rollup_id).hex(),
            '0x' + word(0x1f).hex(),
        ]
    return RawLogEntry.from_log(
        {
            'topics': topics,
            'data': '0x' + '00' * 64,
            'transactionHash': TX_HASH,
            'blockNumber': '0x10',
            'logIndex': '0x2',
        },
        source_chain="l1",
    )


def output_proposed_log(l2_block: int, l1_timestamp: int, data: bytes | None = None) -> dict:
    """Build an OutputProposed receipt log (formatted, bytes topics)."""
    return {
        'topics': [
            bytes.fromhex(OUTPUT_PROPOSED_TOPIC[2:]),
            b'\x11' * 32,        # outputRoot
            word(42),            # l2OutputIndex
            word(l2_block),      # l2BlockNumber
        ],
        'data': word(l1_timestamp) if data is None else data,
        'transactionHash': bytes.fromhex(TX_HASH[2:]),
        'blockNumber': 16,
        'logIndex': 3,
    }


@pytest.fixture
def criteria():
    """Filter criteria for the monitored rollup."""
    return FilterCriteria(
        contract_address=CONTRACT,
        event_topic=VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC,
        secondary_event_topic=OUTPUT_PROPOSED_TOPIC,
        rollup_id=ROLLUP_ID,
    )


@pytest.fixture
def log_source():
    """Mock L1 client returning receipt logs."""
    mock = MagicMock()
    mock.get_transaction_logs = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def resolver():
    """Mock L2 timestamp resolver."""
    return AsyncMock(return_value=1_700_000_000)


@pytest.fixture
def emitter():
    """Mock metrics emitter."""
    return MagicMock()


@pytest.fixture
def correlator(criteria, log_source, resolver, emitter):
    """Create a FinalityCorrelator wired to mocks."""
    return FinalityCorrelator(
        criteria=criteria,
        log_source=log_source,
        resolve_timestamp=resolver,
        emitter=emitter,
    )


def error_records(caplog) -> list[logging.LogRecord]:
    return [record for record in caplog.records if record.levelno >= logging.ERROR]


class TestFinalityCorrelator:
    """Test suite for FinalityCorrelator functionality."""

    @pytest.mark.asyncio
    async def test_delta_is_l1_timestamp_minus_l2_timestamp(
        self, correlator, log_source, resolver, emitter
    ):
        """Test that the emitted delta equals T - S exactly."""
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=123456, l1_timestamp=1_700_000_750)
        ]

        observations = await correlator.correlate(primary_log())

        assert len(observations) == 1
        observation = observations[0]
        assert observation.l2_block_number == 123456
        assert observation.l1_timestamp == 1_700_000_750
        assert observation.l2_block_timestamp == 1_700_000_000
        assert observation.delta_seconds == 750

        log_source.get_transaction_logs.assert_awaited_once_with(TX_HASH)
        resolver.assert_awaited_once_with(123456)
        emitter.gauge.assert_called_once_with(
            L1_L2_TIME_DELTA,
            750,
            ["l2_block_number:123456", "rollup_id:20"],
        )

    @pytest.mark.asyncio
    async def test_negative_delta_is_not_clamped(self, correlator, log_source, resolver, emitter):
        """Test that a skewed L2 timestamp surfaces as a negative delta."""
        resolver.return_value = 1_700_000_100
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=7, l1_timestamp=1_700_000_040)
        ]

        observations = await correlator.correlate(primary_log())

        assert observations[0].delta_seconds == -60
        assert emitter.gauge.call_args.args[1] == -60

    @pytest.mark.asyncio
    async def test_insufficient_topics_is_protocol_violation(
        self, correlator, log_source, emitter, caplog
    ):
        """Test that a log with fewer than 2 topics is reported and dropped."""
        entry = primary_log(topics=[VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC])

        observations = await correlator.correlate(entry)

        assert observations == []
        assert correlator.events_invalid == 1
        assert error_records(caplog)
        log_source.get_transaction_logs.assert_not_awaited()
        emitter.gauge.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_rollup_is_silently_dropped(self, correlator, log_source, emitter, caplog):
        """Test that events for other rollups are filtered without errors."""
        observations = await correlator.correlate(primary_log(rollup_id=ROLLUP_ID + 1))

        assert observations == []
        assert correlator.events_filtered == 1
        assert correlator.events_invalid == 0
        assert correlator.errors == 0
        assert not error_records(caplog)
        log_source.get_transaction_logs.assert_not_awaited()
        emitter.gauge.assert_not_called()

    @pytest.mark.asyncio
    async def test_rollup_id_compares_full_topic_value(self, correlator, log_source):
        """Test that the whole 32-byte topic is compared, not only its low 32 bits.

        A topic equal to the configured id plus 2**32 is a different rollup.
        """
        await correlator.correlate(primary_log(rollup_id=ROLLUP_ID + 2**32))

        assert correlator.events_filtered == 1
        log_source.get_transaction_logs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_two_output_proposed_logs_yield_two_observations(
        self, correlator, log_source, resolver, emitter
    ):
        """Test that every OutputProposed log in the transaction is processed."""
        resolver.side_effect = [1_000, 2_000]
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=10, l1_timestamp=1_500),
            output_proposed_log(l2_block=11, l1_timestamp=2_900),
        ]

        observations = await correlator.correlate(primary_log())

        assert [o.delta_seconds for o in observations] == [500, 900]
        assert emitter.gauge.call_count == 2
        assert correlator.observations_emitted == 2

    @pytest.mark.asyncio
    async def test_sibling_processed_when_resolution_fails(
        self, correlator, log_source, resolver, emitter
    ):
        """Test that a failed timestamp lookup does not block the next match."""
        resolver.side_effect = [TimestampResolutionError("block not found"), 2_000]
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=10, l1_timestamp=1_500),
            output_proposed_log(l2_block=11, l1_timestamp=2_030),
        ]

        observations = await correlator.correlate(primary_log())

        assert len(observations) == 1
        assert observations[0].l2_block_number == 11
        assert observations[0].delta_seconds == 30
        assert correlator.errors == 1
        emitter.gauge.assert_called_once()

    @pytest.mark.asyncio
    async def test_sibling_processed_when_metric_submission_fails(
        self, correlator, log_source, emitter
    ):
        """Test that a failed gauge submission does not block the next match."""
        emitter.gauge.side_effect = [MetricSubmissionError("agent down"), None]
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=10, l1_timestamp=1_700_000_001),
            output_proposed_log(l2_block=11, l1_timestamp=1_700_000_002),
        ]

        observations = await correlator.correlate(primary_log())

        assert [o.l2_block_number for o in observations] == [11]
        assert emitter.gauge.call_count == 2
        assert correlator.errors == 1

    @pytest.mark.asyncio
    async def test_short_payload_is_decode_error(self, correlator, log_source, resolver, emitter):
        """Test that an OutputProposed log with under 32 data bytes is skipped."""
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=10, l1_timestamp=0, data=b'\x01' * 31),
            output_proposed_log(l2_block=11, l1_timestamp=1_700_000_005),
        ]

        observations = await correlator.correlate(primary_log())

        assert [o.l2_block_number for o in observations] == [11]
        assert correlator.events_invalid == 1
        resolver.assert_awaited_once_with(11)

    @pytest.mark.asyncio
    async def test_too_few_output_proposed_topics_is_decode_error(
        self, correlator, log_source, resolver
    ):
        """Test that an OutputProposed log with fewer than 4 topics is skipped."""
        bad_log = output_proposed_log(l2_block=10, l1_timestamp=1)
        bad_log['topics'] = bad_log['topics'][:3]
        log_source.get_transaction_logs.return_value = [bad_log]

        observations = await correlator.correlate(primary_log())

        assert observations == []
        assert correlator.events_invalid == 1
        resolver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unrelated_receipt_logs_are_ignored(self, correlator, log_source, resolver):
        """Test that logs with other signatures in the receipt are skipped."""
        log_source.get_transaction_logs.return_value = [
            {'topics': [], 'data': '0x', 'transactionHash': TX_HASH},
            {'topics': [VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC, '0x' + word(ROLLUP_ID).hex()],
             'data': '0x', 'transactionHash': TX_HASH},
            output_proposed_log(l2_block=99, l1_timestamp=1_700_000_009),
        ]

        observations = await correlator.correlate(primary_log())

        assert [o.l2_block_number for o in observations] == [99]
        assert correlator.events_invalid == 0
        resolver.assert_awaited_once_with(99)

    @pytest.mark.asyncio
    async def test_receipt_fetch_failure_is_reported(self, correlator, log_source, emitter, caplog):
        """Test that a failed receipt fetch is logged and does not raise."""
        log_source.get_transaction_logs.side_effect = ConnectionError("socket closed")

        observations = await correlator.correlate(primary_log())

        assert observations == []
        assert correlator.errors == 1
        assert any(TX_HASH in record.getMessage() for record in error_records(caplog))
        emitter.gauge.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_metrics(self, correlator, log_source):
        """Test that counters are reported."""
        log_source.get_transaction_logs.return_value = [
            output_proposed_log(l2_block=1, l1_timestamp=1_700_000_001)
        ]
        await correlator.correlate(primary_log())
        await correlator.correlate(primary_log(rollup_id=1))

        assert correlator.get_metrics() == {
            "events_processed": 1,
            "events_filtered": 1,
            "events_invalid": 0,
            "errors": 0,
            "observations_emitted": 1,
        }
