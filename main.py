#!/usr/bin/env python3
"""Entry point for the rollup finality monitor.

This module starts the service that tracks the L1/L2 finality delta of a
rollup and the balances of its fee vaults.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from finality_monitor.config import MonitorConfig
from finality_monitor.monitor import FinalityMonitor


async def main() -> None:
    """Main entry point for the finality monitor.

    Parses startup arguments, loads configuration from environment,
    and runs the monitor until interrupted.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Rollup Finality Monitor - Track L1/L2 finality delta and fee vault balances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  ETH_RPC                  - L1 RPC endpoint (http(s) is upgraded to ws(s))
  POLYGON_ZKEVM_PROXY_ADDR - Rollup manager contract on L1
  ROLLUP_ID                - Rollup identifier to monitor
  ROLLUP_RPC               - L2 RPC endpoint
  DD_AGENT_HOST            - DogStatsD host (default: 127.0.0.1)
  DD_DOGSTATSD_PORT        - DogStatsD port (default: 8125)
  VAULT_ADDRESSES          - Optional vault table: type=address,...
  LOG_LEVEL                - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file (default: ./.env)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)
    logger.info("=== Rollup Finality Monitor Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        config: MonitorConfig = MonitorConfig.from_env(env_file=args.env_file)
        config.log_config()
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - ETH_RPC: L1 RPC endpoint")
        logger.error("  - POLYGON_ZKEVM_PROXY_ADDR: Rollup manager contract on L1")
        logger.error("  - ROLLUP_ID: Rollup identifier (unsigned 32-bit)")
        logger.error("  - ROLLUP_RPC: L2 RPC endpoint")
        sys.exit(1)

    try:
        monitor: FinalityMonitor = FinalityMonitor(config)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, monitor.stop)

        await monitor.run()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
