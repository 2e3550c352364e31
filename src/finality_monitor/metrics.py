"""Gauge submission to the DogStatsD agent."""

import logging
from collections.abc import Iterable

from datadog.dogstatsd import DogStatsd

from .errors import MetricSubmissionError

logger = logging.getLogger(__name__)

FINALITY_METRIC_PREFIX = "katana_finality_tracker"
BALANCE_METRIC_PREFIX = "katana_balance_monitor"

L1_L2_TIME_DELTA = f"{FINALITY_METRIC_PREFIX}.l1_l2_time_delta"
DISPATCH_QUEUE_DROPPED = f"{FINALITY_METRIC_PREFIX}.dispatch_queue_dropped"


def tag(key: str, value: object) -> str:
    """Format a single ``key:value`` statsd tag."""
    return f"{key}:{value}"


def vault_balance_metric(vault_type: str) -> str:
    return f"{BALANCE_METRIC_PREFIX}.{vault_type}_vault_balance"


def vault_delta_metric(vault_type: str, interval: float) -> str:
    return f"{BALANCE_METRIC_PREFIX}.{vault_type}_vault_delta_{int(interval)}s"


class MetricsEmitter:
    """Stateless wrapper that submits gauges with a tag set."""

    def __init__(self, statsd: DogStatsd) -> None:
        self.statsd = statsd

    @classmethod
    def connect(cls, host: str = "127.0.0.1", port: int = 8125) -> "MetricsEmitter":
        """Create an emitter backed by a UDP DogStatsD client."""
        logger.debug(f"Creating DogStatsD client for {host}:{port}")
        return cls(DogStatsd(host=host, port=port))

    def gauge(self, name: str, value: float | int, tags: Iterable[str]) -> None:
        """Submit a gauge value.

        Args:
            name: Fully qualified metric name
            value: Gauge magnitude, converted to float
            tags: Unordered ``key:value`` tags

        Raises:
            MetricSubmissionError: If the client rejects the submission
        """
        tag_list = list(tags)
        try:
            self.statsd.gauge(name, float(value), tags=tag_list, sample_rate=1)
        except Exception as e:
            raise MetricSubmissionError(f"Failed to send gauge {name}: {e}") from e

        logger.info(f"Sent metric: {name}={value}, tags={tag_list}")

    def close(self) -> None:
        """Close the underlying statsd socket."""
        self.statsd.close_socket()
