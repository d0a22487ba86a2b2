"""Bounded polling for asynchronous bus state."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from machineutil.errors import OperationTimedOut
from machineutil.models.config import WaitConfig


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def poll_until(
    probe: Callable[[], Awaitable[Optional[T]]],
    what: str,
    timeout: float,
    wait: WaitConfig,
) -> T:
    """Await ``probe`` until it returns a truthy value.

    Sleeps ``wait.poll_interval_seconds`` between probes, growing by
    ``wait.backoff_factor`` up to ``wait.max_poll_interval_seconds``.
    Raises OperationTimedOut once ``timeout`` seconds have elapsed.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    delay = wait.poll_interval_seconds

    while True:
        result = await probe()
        if result:
            return result

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise OperationTimedOut(what, timeout)

        logger.debug(f"Waiting {min(delay, remaining):.2f}s for {what}")
        await asyncio.sleep(min(delay, remaining))
        delay = min(delay * wait.backoff_factor, wait.max_poll_interval_seconds)
