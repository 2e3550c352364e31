"""
Rollup finality monitor package.

Tracks the L1/L2 finality delta of a rollup and the balances of its fee
vaults, reporting both as DogStatsD gauges.
"""

from .config import MonitorConfig
from .correlator import FinalityCorrelator
from .models import FinalityObservation, RawLogEntry, VaultSnapshot
from .monitor import FinalityMonitor

__all__ = [
    "MonitorConfig",
    "FinalityMonitor",
    "FinalityCorrelator",
    "FinalityObservation",
    "RawLogEntry",
    "VaultSnapshot",
]
__version__ = "0.1.0"
