"""
Retry policy for externally-dependent operations.

Classification is message based: rate-limit, overload and network-fetch
signatures are transient and retried with linear backoff (attempt i waits
i * 3 s); everything else is fatal and re-raised on the first failure.
A rejected/rotated API key ("requested entity was not found") triggers one
interactive key re-selection and an immediate extra call outside the budget.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
BATCH_ITEM_ATTEMPTS = 2
BACKOFF_STEP_SECONDS = 3.0

# "load failed" is what Safari-era fetch errors look like; keep it for proxied messages
TRANSIENT_SIGNATURES = (
    "429",
    "quota",
    "rate limit",
    "resource_exhausted",
    "503",
    "overloaded",
    "unavailable",
    "fetch",
    "load failed",
    "network error",
    "connection",
    "timed out",
)
CREDENTIAL_INVALID_SIGNATURE = "requested entity was not found"

Sleep = Callable[[float], Awaitable[Any]]


def _message(exc: BaseException) -> str:
    return str(exc).lower()


def is_transient(exc: BaseException) -> bool:
    msg = _message(exc)
    return any(sig in msg for sig in TRANSIENT_SIGNATURES)


def is_credential_invalid(exc: BaseException) -> bool:
    return CREDENTIAL_INVALID_SIGNATURE in _message(exc)


class RetryPolicy:
    """Bounded retry with linear backoff and an optional key re-selection hook."""

    def __init__(
        self,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_step: float = BACKOFF_STEP_SECONDS,
        *,
        reselect_credential: Optional[Callable[[], Awaitable[Any]]] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.attempts = max(1, int(attempts))
        self.backoff_step = float(backoff_step)
        self._reselect = reselect_credential
        self._sleep = sleep or asyncio.sleep

    def with_attempts(self, attempts: int) -> "RetryPolicy":
        return RetryPolicy(
            attempts,
            self.backoff_step,
            reselect_credential=self._reselect,
            sleep=self._sleep,
        )

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Invoke `fn(*args, **kwargs)` under this policy."""
        reselected = False

        async def attempt() -> Any:
            nonlocal reselected
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if reselected or self._reselect is None or not is_credential_invalid(exc):
                    raise
                reselected = True
                logger.warning("API key rejected (%s). Requesting key re-selection.", exc)
                await self._reselect()
                return await fn(*args, **kwargs)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_incrementing(start=self.backoff_step, increment=self.backoff_step),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(attempt)

    async def call_each(
        self,
        fn: Callable[[Any], Awaitable[Any]],
        items: Iterable[Any],
        *,
        attempts: int = BATCH_ITEM_ATTEMPTS,
        batch_size: int = 2,
        pause: float = 1.2,
    ) -> List[Any]:
        """
        Run `fn(item)` for every item with a per-item budget.
        Items are issued `batch_size` at a time; failed or empty results are
        omitted so one bad item never aborts the batch.
        """
        policy = self.with_attempts(attempts)
        pending = list(items)
        results: List[Any] = []
        batch_size = max(1, int(batch_size))

        for start in range(0, len(pending), batch_size):
            batch = pending[start:start + batch_size]
            outcomes = await asyncio.gather(*(policy._call_item(fn, item) for item in batch))
            results.extend(outcome for outcome in outcomes if outcome)
            if start + batch_size < len(pending) and pause > 0:
                await self._sleep(pause)

        return results

    async def _call_item(self, fn: Callable[[Any], Awaitable[Any]], item: Any) -> Any:
        try:
            return await self.call(fn, item)
        except Exception as exc:
            logger.warning("Batch item dropped after %d attempt(s): %s", self.attempts, exc)
            return None

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            'Transient error detected: "%s". Retrying in %dms (attempt %d/%d)...',
            exc,
            int(delay * 1000),
            retry_state.attempt_number,
            self.attempts,
        )
