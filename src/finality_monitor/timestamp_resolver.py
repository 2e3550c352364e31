"""L2 block timestamp lookups over raw JSON-RPC.

The correlator needs exactly one field of one block, so the resolver posts a
single ``eth_getBlockByNumber`` request with httpx and parses the hex
timestamp strictly instead of going through a full web3 provider.
"""

import itertools
import json
import logging
import string
from typing import Any

import httpx

from .errors import TimestampResolutionError

logger = logging.getLogger(__name__)


def parse_hex_quantity(value: Any) -> int:
    """Parse a ``0x``-prefixed JSON-RPC quantity.

    :param value: Hex string as returned by the node
    :return: Integer value
    :raises ValueError: If the value is not a prefixed hex string
    """
    if not isinstance(value, str) or len(value) <= 2 or not value.startswith('0x'):
        raise ValueError(f"Malformed hex quantity: {value!r}")
    digits = value[2:]
    # int() alone tolerates signs, whitespace and underscores
    if not all(char in string.hexdigits for char in digits):
        raise ValueError(f"Malformed hex quantity: {value!r}")
    return int(digits, 16)


class L2TimestampResolver:
    """Resolves L2 block timestamps with a single JSON-RPC round trip.

    Errors are raised to the caller; this class never retries.
    """

    def __init__(
        self,
        rpc_url: str,
        client: httpx.AsyncClient | None = None,
        request_timeout: float = 30.0
    ) -> None:
        """
        Initialize the resolver.

        :param rpc_url: HTTP(S) JSON-RPC endpoint of the L2 chain
        :param client: Optional shared httpx client (one is created if omitted)
        :param request_timeout: Timeout for the created client, in seconds
        """
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=request_timeout)
        self._request_ids = itertools.count(1)

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        logger.debug(f"Posting to {self.rpc_url}: {json.dumps(payload)}")
        response: httpx.Response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        return response.json()

    async def resolve(self, block_number: int) -> int:
        """
        Fetch the timestamp of an L2 block.

        :param block_number: The L2 block number
        :return: Block timestamp in unix seconds
        :raises TimestampResolutionError: On transport failure, RPC error,
            unknown block or a missing/malformed timestamp
        """
        try:
            body = await self._rpc_call("eth_getBlockByNumber", [hex(block_number), False])
        except (httpx.HTTPError, ValueError) as e:
            raise TimestampResolutionError(
                f"Failed to get L2 block {block_number}: {e}"
            ) from e

        match body:
            case {"error": error}:
                raise TimestampResolutionError(
                    f"RPC error fetching L2 block {block_number}: {error}"
                )
            case {"result": None}:
                raise TimestampResolutionError(f"L2 block {block_number} not found")
            case {"result": {"timestamp": timestamp}}:
                pass
            case _:
                raise TimestampResolutionError(
                    f"Missing timestamp in L2 block {block_number} response"
                )

        try:
            return parse_hex_quantity(timestamp)
        except ValueError as e:
            raise TimestampResolutionError(
                f"Failed to parse timestamp of L2 block {block_number}: {e}"
            ) from e

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
