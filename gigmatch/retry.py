# gigmatch/retry.py — one retry policy for every store call
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from .errors import CoreError, StoreError, TransientStoreError

log = logging.getLogger("gigmatch.retry")

T = TypeVar("T")

RETRYABLE = (TransientStoreError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 0.25
    max_delay: float = 5.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt number ``attempt + 1`` (attempts count from 1)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


async def call_with_retry(policy: RetryPolicy, name: str,
                          fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    attempts = max(1, policy.max_attempts)
    last_err: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await fn(*args, **kwargs)
        except RETRYABLE as e:
            last_err = e
            if attempt == attempts:
                break
            delay = policy.delay_for(attempt)
            log.warning("[retry] %s failed (attempt %d/%d): %s; next try in %.2fs",
                        name, attempt, attempts, e, delay)
            await asyncio.sleep(delay)
        except CoreError:
            raise
        except Exception as e:
            raise StoreError(f"{name} failed: {e}") from e
    if isinstance(last_err, TransientStoreError):
        raise last_err
    raise TransientStoreError(f"{name} failed after {attempts} attempts: {last_err}") from last_err


class RetryingStore:
    """Wraps a DocumentStore so every coroutine method goes through ``call_with_retry``.

    ``listen_messages`` is passed through untouched: stream reconnection is
    owned by the chat stream, which needs to see each disconnect.
    """

    _PASSTHROUGH = frozenset({"listen_messages", "close"})

    def __init__(self, store: Any, policy: RetryPolicy):
        self.inner = store
        self.policy = policy

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self.inner, name)
        if name in self._PASSTHROUGH or not inspect.iscoroutinefunction(attr):
            return attr

        async def _call(*args: Any, **kwargs: Any) -> Any:
            return await call_with_retry(self.policy, name, attr, *args, **kwargs)

        return _call


def retrying(store: Any, policy: RetryPolicy | None = None) -> RetryingStore:
    if isinstance(store, RetryingStore):
        return store
    return RetryingStore(store, policy or RetryPolicy())
