#!/usr/bin/env python3
"""Data models for the rollup finality monitor.

This module provides the data classes shared by the subscriber, the
correlator and the balance poller: the immutable subscription filter,
the normalized log entry, the derived finality observation and the
per-vault balance snapshot.
"""

from dataclasses import dataclass
from typing import Any

from web3 import Web3


def to_bytes(value: Any) -> bytes:
    """Convert a topic, data field or hash into raw bytes.

    Providers hand these back in different shapes depending on the
    transport:
    - As bytes objects (HexBytes from formatted responses)
    - As hex strings: "0x0000...0001"

    :param value: The value to convert (bytes, str or None)
    :return: Raw bytes, empty when the value is missing
    """
    if value is None:
        return b''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        hex_str = value[2:] if value.startswith('0x') else value
        return bytes.fromhex(hex_str)
    raise TypeError(f"Unsupported byte value type: {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class FilterCriteria:
    """Immutable filter for the settlement chain log subscription.

    Attributes:
        contract_address: Checksummed address of the rollup manager contract
        event_topic: Topic hash of the primary event (VerifyBatchesTrustedAggregator)
        secondary_event_topic: Topic hash of the nested event (OutputProposed)
        rollup_id: Rollup identifier this monitor is responsible for
    """

    contract_address: str
    event_topic: str
    secondary_event_topic: str
    rollup_id: int

    @property
    def secondary_topic_bytes(self) -> bytes:
        """The secondary event topic as raw bytes for log comparison."""
        return to_bytes(self.secondary_event_topic)


@dataclass(frozen=True, slots=True)
class RawLogEntry:
    """A single event log as delivered by a provider.

    Attributes:
        topics: Ordered 32-byte topic hashes
        data: Non-indexed payload bytes
        transaction_hash: Hash of the emitting transaction (with 0x prefix)
        source_chain: Label of the chain the log was read from
        block_number: Block the log was included in, when known
        log_index: Position of the log inside the block, when known
    """

    topics: tuple[bytes, ...]
    data: bytes
    transaction_hash: str
    source_chain: str
    block_number: int | None = None
    log_index: int | None = None

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"RawLogEntry(chain={self.source_chain}, "
            f"tx={self.transaction_hash[:10]}..., "
            f"topics={len(self.topics)}, "
            f"block={self.block_number})"
        )

    @classmethod
    def from_log(cls, log: Any, source_chain: str) -> "RawLogEntry":
        """Build an entry from a dict-like or attribute-style log receipt.

        Args:
            log: Log receipt from a subscription message or a transaction receipt
            source_chain: Label of the chain the log came from

        Returns:
            Normalized RawLogEntry
        """
        if hasattr(log, 'get') and callable(log.get):
            topics = log.get('topics', [])
            data = log.get('data')
            tx_hash = log.get('transactionHash')
            block_number = log.get('blockNumber')
            log_index = log.get('logIndex')
        else:
            topics = getattr(log, 'topics', [])
            data = getattr(log, 'data', None)
            tx_hash = getattr(log, 'transactionHash', None)
            block_number = getattr(log, 'blockNumber', None)
            log_index = getattr(log, 'logIndex', None)

        return cls(
            topics=tuple(to_bytes(topic) for topic in (topics or [])),
            data=to_bytes(data),
            transaction_hash=_normalize_hash(tx_hash),
            source_chain=source_chain,
            block_number=_to_int(block_number),
            log_index=_to_int(log_index),
        )


@dataclass(frozen=True, slots=True)
class FinalityObservation:
    """Time between an L2 block and the L1 timestamp that finalized it.

    Attributes:
        rollup_id: Rollup the observation belongs to
        l2_block_number: L2 block referenced by the OutputProposed event
        l1_timestamp: L1 timestamp carried in the OutputProposed payload
        l2_block_timestamp: Timestamp of the L2 block itself
        delta_seconds: l1_timestamp - l2_block_timestamp, may be negative
    """

    rollup_id: int
    l2_block_number: int
    l1_timestamp: int
    l2_block_timestamp: int
    delta_seconds: int

    @classmethod
    def build(
        cls,
        rollup_id: int,
        l2_block_number: int,
        l1_timestamp: int,
        l2_block_timestamp: int
    ) -> "FinalityObservation":
        """Create an observation, deriving the signed delta."""
        return cls(
            rollup_id=rollup_id,
            l2_block_number=l2_block_number,
            l1_timestamp=l1_timestamp,
            l2_block_timestamp=l2_block_timestamp,
            delta_seconds=l1_timestamp - l2_block_timestamp,
        )

    def __str__(self) -> str:
        return (
            f"FinalityObservation(rollup={self.rollup_id}, "
            f"l2_block={self.l2_block_number}, "
            f"delta={self.delta_seconds}s)"
        )


@dataclass(frozen=True, slots=True)
class VaultConfig:
    """One monitored vault and the category label used for its metrics."""

    address: str
    vault_type: str

    def __post_init__(self) -> None:
        if not self.vault_type:
            raise ValueError(f"Vault type is required for {self.address}")
        # Lowercased so mixed-case input is not rejected on checksum grounds
        if not Web3.is_address(self.address.lower()):
            raise ValueError(f"Invalid vault address: {self.address}")


@dataclass(slots=True)
class VaultSnapshot:
    """Balance samples for one vault, owned by the balance poller.

    Balances are in wei. The previous balance starts at zero, so the first
    completed sample reports the full balance as its delta.
    """

    address: str
    vault_type: str
    current_balance: int = 0
    previous_balance: int = 0
    delta_balance: int = 0

    def shift(self) -> None:
        """Move the current balance into the previous slot before re-sampling."""
        self.previous_balance = self.current_balance
        self.delta_balance = self.current_balance - self.previous_balance

    def update(self, balance: int) -> None:
        """Store a freshly sampled balance and recompute the delta."""
        self.current_balance = balance
        self.delta_balance = self.current_balance - self.previous_balance


def _normalize_hash(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    value = str(value)
    return value if value.startswith('0x') else '0x' + value


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(str(value), 16) if str(value).startswith('0x') else int(value)
