"""
Chain client utilities for the settlement chain and the rollup.

Wraps AsyncWeb3 so the subscriber, correlator and poller only see the
handful of calls they need.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.providers import WebSocketProvider
from web3.providers.rpc import AsyncHTTPProvider

from ..errors import BalanceQueryError, SubscriptionError

logger = logging.getLogger(__name__)


def convert_to_websocket_url(http_url: str) -> str:
    """Convert an HTTP RPC URL to its WebSocket equivalent."""
    if http_url.startswith("https://"):
        ws_url = http_url.replace("https://", "wss://", 1)
    elif http_url.startswith("http://"):
        ws_url = http_url.replace("http://", "ws://", 1)
    else:
        return http_url

    logger.info(f"Converting RPC endpoint to WebSocket: {ws_url}")
    return ws_url


def convert_to_http_url(ws_url: str) -> str:
    """Convert a WebSocket RPC URL to its HTTP equivalent."""
    if ws_url.startswith("wss://"):
        return ws_url.replace("wss://", "https://", 1)
    if ws_url.startswith("ws://"):
        return ws_url.replace("ws://", "http://", 1)
    return ws_url


class L1ChainClient:
    """
    Client for the L1 settlement chain.

    The WebSocket connection lives for one subscription session; subscription
    calls made while no session is open fail with SubscriptionError. Receipts
    are read over a long-lived HTTP connection so logs queued before a
    teardown can still be correlated while the subscription reconnects.
    """

    def __init__(
        self,
        rpc_url: str,
        request_timeout: float = 60,
        subscription_queue_size: int = 10000
    ) -> None:
        self.websocket_url = convert_to_websocket_url(rpc_url)
        self.request_timeout = request_timeout
        self.subscription_queue_size = subscription_queue_size
        self.w3: AsyncWeb3 | None = None
        self.http_url = convert_to_http_url(rpc_url)
        self.reader = AsyncWeb3(
            AsyncHTTPProvider(self.http_url, request_kwargs={'timeout': request_timeout})
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator["L1ChainClient"]:
        """Open a WebSocket connection for the duration of the block."""
        logger.info(f"Connecting to WebSocket: {self.websocket_url}")
        async with AsyncWeb3(
            WebSocketProvider(
                self.websocket_url,
                request_timeout=self.request_timeout,
                subscription_response_queue_size=self.subscription_queue_size,
            )
        ) as w3:
            self.w3 = w3
            logger.info(f"Successfully connected to L1 via WebSocket: {self.websocket_url}")
            try:
                yield self
            finally:
                self.w3 = None

    def _connection(self) -> AsyncWeb3:
        if self.w3 is None:
            raise SubscriptionError("L1 WebSocket is not connected")
        return self.w3

    async def subscribe_logs(self, address: str, topics: list[str]) -> str:
        """Start an ``eth_subscribe`` logs subscription and return its id."""
        w3 = self._connection()
        return await w3.eth.subscribe(
            "logs",
            {"address": Web3.to_checksum_address(address), "topics": topics},
        )

    async def iter_logs(self) -> AsyncIterator[Any]:
        """Yield log results from the open subscription until the stream ends."""
        w3 = self._connection()
        async for message in w3.socket.process_subscriptions():
            yield message["result"]

    async def block_number(self) -> int:
        """Trivial round trip used as the liveness probe."""
        return await self._connection().eth.block_number

    async def get_transaction_logs(self, tx_hash: str) -> list[Any]:
        """Fetch every log emitted by a transaction."""
        receipt = await self.reader.eth.get_transaction_receipt(tx_hash)
        return list(receipt["logs"])

    async def close(self) -> None:
        await self.reader.provider.disconnect()


class L2ChainClient:
    """HTTP client for balance queries on the rollup."""

    def __init__(self, rpc_url: str, request_timeout: float = 30) -> None:
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={'timeout': request_timeout})
        )

    async def get_balance(self, address: str) -> int:
        """
        Read the latest balance of an address in wei.

        :raises BalanceQueryError: If the RPC call fails
        """
        try:
            return await self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except Exception as e:
            raise BalanceQueryError(address, str(e)) from e

    async def close(self) -> None:
        await self.w3.provider.disconnect()
