#!/usr/bin/env python3
"""Configuration management for the rollup finality monitor.

This module provides type-safe configuration dataclasses with validation
for the monitor. Configuration is loaded from environment variables (and an
optional .env file) with sensible defaults where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from dotenv import load_dotenv
from web3 import Web3

from .models import FilterCriteria, VaultConfig

# Get logger for this module
logger = logging.getLogger(__name__)

# Event signatures
VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC = "0xd1ec3a1216f08b6eff72e169ceb548b782db18a6614852618d86bb19f3f9b0d3"
OUTPUT_PROPOSED_TOPIC = "0xa7aaf2512769da4e444e3de247be2564225c2e7a8f74cfe528e46e17d24868e2"

MAX_ROLLUP_ID = 2**32 - 1

# OP Stack fee vault predeploys on the rollup
DEFAULT_VAULTS: tuple[VaultConfig, ...] = (
    VaultConfig("0x4200000000000000000000000000000000000019", "basefee"),
    VaultConfig("0x420000000000000000000000000000000000001a", "l1fee"),
    VaultConfig("0x420000000000000000000000000000000000001B", "operator_fee"),
    VaultConfig("0x4200000000000000000000000000000000000011", "sequencer_fee"),
)


def _validate_rpc_url(rpc_url: str, env_name: str) -> None:
    if not rpc_url:
        raise ValueError(f"RPC URL is required ({env_name})")

    parsed = urlparse(rpc_url)
    if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
        raise ValueError(
            f"Invalid RPC URL scheme: {parsed.scheme}. "
            "Expected http, https, ws, or wss"
        )


def _validate_topic(topic: str, name: str) -> None:
    hex_str = topic[2:] if topic.startswith('0x') else topic
    if len(hex_str) != 64:
        raise ValueError(f"Invalid {name}: expected 32-byte hex topic, got {topic!r}")
    try:
        int(hex_str, 16)
    except ValueError:
        raise ValueError(f"Invalid {name}: not hexadecimal") from None


def parse_vaults(value: str) -> tuple[VaultConfig, ...]:
    """Parse a vault table of the form ``type=address,type=address``.

    Args:
        value: Comma separated ``vault_type=address`` pairs

    Returns:
        Tuple of VaultConfig entries in the given order

    Raises:
        ValueError: If an entry is malformed or a vault type repeats
    """
    vaults: list[VaultConfig] = []
    for item in filter(None, (part.strip() for part in value.split(','))):
        vault_type, sep, address = item.partition('=')
        if not sep:
            raise ValueError(f"Invalid vault entry {item!r}, expected type=address")
        vaults.append(VaultConfig(address=address.strip(), vault_type=vault_type.strip()))

    if not vaults:
        raise ValueError("Vault table is empty")

    types = [vault.vault_type for vault in vaults]
    if len(set(types)) != len(types):
        raise ValueError(f"Duplicate vault types in {value!r}")

    return tuple(vaults)


@dataclass(frozen=True, slots=True)
class L1ChainConfig:
    """Configuration for the L1 settlement chain.

    Attributes:
        rpc_url: RPC endpoint; http(s) URLs are upgraded to ws(s) when subscribing
        contract_address: Checksummed address of the rollup manager proxy
        event_topic: Topic of the VerifyBatchesTrustedAggregator event
        secondary_event_topic: Topic of the OutputProposed event
    """

    rpc_url: str
    contract_address: str
    event_topic: str = VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC
    secondary_event_topic: str = OUTPUT_PROPOSED_TOPIC

    def __post_init__(self) -> None:
        """Validate L1 chain configuration."""
        _validate_rpc_url(self.rpc_url, "ETH_RPC")

        if not self.contract_address:
            raise ValueError(
                "Contract address is required (POLYGON_ZKEVM_PROXY_ADDR)"
            )

        if not Web3.is_address(self.contract_address):
            raise ValueError(
                f"Invalid contract address: {self.contract_address}"
            )

        # Convert to checksum address
        checksummed = Web3.to_checksum_address(self.contract_address)
        if checksummed != self.contract_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'contract_address', checksummed)

        _validate_topic(self.event_topic, "event topic")
        _validate_topic(self.secondary_event_topic, "secondary event topic")


@dataclass(frozen=True, slots=True)
class L2ChainConfig:
    """Configuration for the L2 rollup chain."""

    rpc_url: str

    def __post_init__(self) -> None:
        """Validate L2 chain configuration."""
        _validate_rpc_url(self.rpc_url, "ROLLUP_RPC")


@dataclass(frozen=True, slots=True)
class StatsdConfig:
    """Address of the DogStatsD agent."""

    host: str = "127.0.0.1"
    port: int = 8125

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("Statsd host is required (DD_AGENT_HOST)")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid statsd port: {self.port}")


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Timing and buffering settings for the monitor loops."""
    reconnect_delay: float = 5  # seconds between subscription attempts
    health_check_interval: float = 30  # seconds between liveness probes
    balance_poll_interval: float = 300  # seconds between vault samples
    dispatch_queue_size: int = 1000  # matched logs buffered ahead of correlation
    request_timeout: float = 30  # HTTP request timeout in seconds

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.reconnect_delay <= 0:
            raise ValueError(f"Reconnect delay must be positive, got {self.reconnect_delay}")
        if self.health_check_interval <= 0:
            raise ValueError(
                f"Health check interval must be positive, got {self.health_check_interval}"
            )
        if self.balance_poll_interval <= 0:
            raise ValueError(
                f"Balance poll interval must be positive, got {self.balance_poll_interval}"
            )
        if self.dispatch_queue_size <= 0:
            raise ValueError(
                f"Dispatch queue size must be positive, got {self.dispatch_queue_size}"
            )
        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """Main configuration for the finality monitor.

    Attributes:
        l1_chain: Settlement chain endpoint and event filter
        l2_chain: Rollup chain endpoint
        rollup_id: Rollup identifier (unsigned 32-bit)
        monitoring: Loop timing settings
        statsd: Metrics agent address
        vaults: Vaults sampled by the balance poller
    """

    l1_chain: L1ChainConfig
    l2_chain: L2ChainConfig
    rollup_id: int
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    statsd: StatsdConfig = field(default_factory=StatsdConfig)
    vaults: tuple[VaultConfig, ...] = DEFAULT_VAULTS

    def __post_init__(self) -> None:
        """Validate monitor configuration."""
        if not 0 <= self.rollup_id <= MAX_ROLLUP_ID:
            raise ValueError(
                f"Invalid ROLLUP_ID: {self.rollup_id} (must fit in an unsigned 32-bit integer)"
            )

    @property
    def filter_criteria(self) -> FilterCriteria:
        """Subscription filter derived from the L1 settings."""
        return FilterCriteria(
            contract_address=self.l1_chain.contract_address,
            event_topic=self.l1_chain.event_topic.lower(),
            secondary_event_topic=self.l1_chain.secondary_event_topic.lower(),
            rollup_id=self.rollup_id,
        )

    @classmethod
    def from_env(cls, env_file: str | None = None) -> "MonitorConfig":
        """Load configuration from environment variables.

        Values already present in the environment take precedence over
        those in the .env file.

        Args:
            env_file: Optional path to a .env file (defaults to ./.env)

        Returns:
            MonitorConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        if not load_dotenv(env_file):
            logger.warning("No .env file loaded, using process environment only")

        eth_rpc = os.environ.get("ETH_RPC", "")
        if not eth_rpc:
            raise ValueError("ETH_RPC environment variable is required")

        contract_address = os.environ.get("POLYGON_ZKEVM_PROXY_ADDR", "")
        if not contract_address:
            raise ValueError("POLYGON_ZKEVM_PROXY_ADDR environment variable is required")

        rollup_rpc = os.environ.get("ROLLUP_RPC", "")
        if not rollup_rpc:
            raise ValueError("ROLLUP_RPC environment variable is required")

        rollup_id_str = os.environ.get("ROLLUP_ID", "")
        try:
            rollup_id = int(rollup_id_str, 10)
        except ValueError:
            raise ValueError(f"Invalid ROLLUP_ID: {rollup_id_str!r}") from None

        l1_config = L1ChainConfig(
            rpc_url=eth_rpc,
            contract_address=contract_address,
            event_topic=os.environ.get(
                "VERIFY_BATCHES_TOPIC", VERIFY_BATCHES_TRUSTED_AGGREGATOR_TOPIC
            ),
            secondary_event_topic=os.environ.get(
                "OUTPUT_PROPOSED_TOPIC", OUTPUT_PROPOSED_TOPIC
            ),
        )

        monitoring_config = MonitoringConfig(
            reconnect_delay=float(os.environ.get("RECONNECT_DELAY", "5")),
            health_check_interval=float(os.environ.get("HEALTH_CHECK_INTERVAL", "30")),
            balance_poll_interval=float(os.environ.get("BALANCE_POLL_INTERVAL", "300")),
            dispatch_queue_size=int(os.environ.get("DISPATCH_QUEUE_SIZE", "1000")),
            request_timeout=float(os.environ.get("REQUEST_TIMEOUT", "30")),
        )

        statsd_config = StatsdConfig(
            host=os.environ.get("DD_AGENT_HOST", "127.0.0.1"),
            port=int(os.environ.get("DD_DOGSTATSD_PORT", "8125")),
        )

        vault_table = os.environ.get("VAULT_ADDRESSES")
        vaults = parse_vaults(vault_table) if vault_table else DEFAULT_VAULTS

        return cls(
            l1_chain=l1_config,
            l2_chain=L2ChainConfig(rpc_url=rollup_rpc),
            rollup_id=rollup_id,
            monitoring=monitoring_config,
            statsd=statsd_config,
            vaults=vaults,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Finality Monitor Configuration")
        logger.info("=" * 60)

        logger.info("L1 Chain:")
        logger.info(f"  RPC URL: {self.l1_chain.rpc_url}")
        logger.info(f"  Contract: {self.l1_chain.contract_address}")
        logger.info(f"  Event Topic: {self.l1_chain.event_topic}")
        logger.info(f"  Secondary Topic: {self.l1_chain.secondary_event_topic}")

        logger.info("L2 Chain:")
        logger.info(f"  RPC URL: {self.l2_chain.rpc_url}")
        logger.info(f"  Rollup ID: {self.rollup_id}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Reconnect Delay: {self.monitoring.reconnect_delay} seconds")
        logger.info(f"  Health Check Interval: {self.monitoring.health_check_interval} seconds")
        logger.info(f"  Balance Poll Interval: {self.monitoring.balance_poll_interval} seconds")
        logger.info(f"  Dispatch Queue Size: {self.monitoring.dispatch_queue_size}")
        logger.info(f"  Request Timeout: {self.monitoring.request_timeout} seconds")

        logger.info(f"Statsd Agent: {self.statsd.host}:{self.statsd.port}")

        logger.info("Vaults:")
        for vault in self.vaults:
            logger.info(f"  {vault.vault_type}: {vault.address}")

        logger.info("=" * 60)
