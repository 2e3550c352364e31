"""Cooperative cancellation helpers shared by the monitor loops."""

import asyncio


async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """
    Sleep for ``timeout`` seconds unless the stop event fires first.

    :param stop_event: Shared cancellation signal
    :param timeout: Maximum time to wait, in seconds
    :return: True if the stop event was set
    """
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
