"""Exception types raised by the finality monitor components."""


class MonitorError(Exception):
    """Base class for all finality monitor errors."""


class ProtocolViolationError(MonitorError):
    """A log entry does not have the shape its event signature requires."""


class SubscriptionError(MonitorError):
    """The L1 log subscription could not be established or was lost."""


class TimestampResolutionError(MonitorError):
    """The L2 block timestamp could not be fetched or parsed."""


class BalanceQueryError(MonitorError):
    """A vault balance could not be read from the L2 chain."""

    def __init__(self, address: str, message: str) -> None:
        super().__init__(f"Failed to get balance for {address}: {message}")
        self.address = address


class MetricSubmissionError(MonitorError):
    """A gauge could not be handed to the metrics agent."""
