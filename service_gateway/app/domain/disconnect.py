"""
Abort in-flight work when the inbound caller disconnects.
"""

import asyncio
from typing import Awaitable, TypeVar

from starlette.requests import Request

from shared.errors import ClientDisconnectedError
from shared.logging import get_logger

T = TypeVar("T")

logger = get_logger("gateway.disconnect")


async def run_while_connected(request: Request, awaitable: Awaitable[T], poll_interval: float = 0.25) -> T:
    """Await ``awaitable``, cancelling it if the client goes away first."""
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling request", path=request.url.path)
                task.cancel()
                raise ClientDisconnectedError()
    finally:
        if not task.done():
            task.cancel()
