import asyncio
import logging

logger = logging.getLogger(__name__)


async def retry_until(probe, *, attempts: int, delay: float, retry_on, sleep=asyncio.sleep):
    """Await ``probe()`` until it returns, at most ``attempts`` times.

    Exceptions listed in ``retry_on`` count as a failed attempt and are
    followed by ``await sleep(delay)``; anything else propagates. Returns
    None once the attempts are exhausted.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await probe()
        except retry_on as exc:
            logger.debug("Attempt %s/%s failed: %s", attempt, attempts, exc)
            if attempt < attempts:
                await sleep(delay)
    return None
