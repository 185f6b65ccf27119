import asyncio
import copy
import functools
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Type

from leadgen.settings import RETRY_BASE_DELAY_MS, RETRY_MAX_ATTEMPTS, RETRY_MAX_DELAY_MS

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    pass


@dataclass
class BackoffPolicy:
    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay_ms: int = RETRY_BASE_DELAY_MS
    max_delay_ms: int = RETRY_MAX_DELAY_MS


async def with_retry(fn: Callable[[], Awaitable],
                     retry_on: Sequence[Type[BaseException]] = (RetryableError,),
                     policy: Optional[BackoffPolicy] = None):
    policy = policy or BackoffPolicy()
    attempt = 0
    last_exc: BaseException | None = None
    while attempt < policy.max_attempts:
        try:
            return await fn()
        except Exception as e:
            last_exc = e
            if not any(isinstance(e, t) for t in retry_on):
                break
            attempt += 1
            if attempt >= policy.max_attempts:
                break
            # exponential backoff with jitter
            delay = min(policy.max_delay_ms, policy.base_delay_ms * (2 ** (attempt - 1)))
            delay = delay * (0.8 + 0.4 * random.random())
            logger.info("retrying after %s (attempt %s/%s)", type(e).__name__, attempt, policy.max_attempts)
            await asyncio.sleep(delay / 1000.0)
    if last_exc:
        raise last_exc


def with_fallback(fallback: Any, *, label: Optional[str] = None, quiet: Sequence[Type[BaseException]] = ()):
    """Decorate a coroutine function so any exception yields ``fallback``.

    ``fallback`` is either a value (deep-copied per call) or a callable taking
    the same arguments as the wrapped function. Exceptions listed in ``quiet``
    are expected degradations (e.g. unconfigured credentials) and are logged
    without a traceback.
    """

    def decorator(fn: Callable[..., Awaitable[Any]]):
        name = label or fn.__qualname__

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            try:
                return await fn(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if quiet and isinstance(exc, tuple(quiet)):
                    logger.warning("%s unavailable, using fallback: %s", name, exc)
                else:
                    logger.warning("%s failed, using fallback: %s", name, exc, exc_info=True)
                if callable(fallback):
                    return fallback(*args, **kwargs)
                return copy.deepcopy(fallback)

        return wrapper

    return decorator
