import asyncio
import logging
from typing import Any, Awaitable, Callable

import discord

logger = logging.getLogger(__name__)

UNKNOWN_INTERACTION = 10062


def is_transient(error: BaseException) -> bool:
    """Errors worth another attempt: unknown interaction (10062) and HTTP 503."""
    if isinstance(error, discord.HTTPException):
        return error.code == UNKNOWN_INTERACTION or error.status == 503
    return isinstance(error, asyncio.TimeoutError)


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args,
    retries: int = 3,
    base_delay: float = 1.0,
    transient: Callable[[BaseException], bool] = is_transient,
    **kwargs,
) -> Any:
    """Call ``func`` up to ``retries`` times, waiting base_delay * attempt between tries.

    Permanent failures are raised immediately; the last transient failure is
    raised once attempts run out.
    """
    if retries < 1:
        raise ValueError("retries must be at least 1")

    for attempt in range(1, retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not transient(e) or attempt == retries:
                raise
            delay = base_delay * attempt
            logger.warning(
                "Attempt %d/%d failed with %s, retrying in %.1fs",
                attempt, retries, type(e).__name__, delay,
            )
            await asyncio.sleep(delay)
