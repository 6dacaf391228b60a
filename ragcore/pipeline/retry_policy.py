"""Explicit retry policy for calls to external collaborators.

The pipeline never retries implicitly.  Whether a failed extraction or
embedding call is attempted again is decided here, from the error's
``transient`` flag, and driven by ``tenacity``.  The default of one
attempt means no automatic retry: a failed extraction marks the document
failed and a failed embedding degrades it to "text available, not
searchable".  Retrying beyond that is a caller action.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ragcore.utils.errors import (
    EmbeddingError,
    ExtractionFailedError,
    UnsupportedMediaTypeError,
)

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times, how fast, and for which errors to retry.

    Attributes
    ----------
    max_attempts:
        Total attempts including the first; ``1`` disables retrying.
    backoff_seconds:
        Multiplier for the exponential wait between attempts.
    backoff_max_seconds:
        Upper bound on a single wait.
    retry_transient_only:
        When ``False`` permanent extraction/embedding errors are retried
        too.  Unsupported media types are never retried.
    """

    max_attempts: int = 1
    backoff_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    retry_transient_only: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("backoff durations must be non-negative")

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, UnsupportedMediaTypeError):
            return False
        if isinstance(exc, (ExtractionFailedError, EmbeddingError)):
            return exc.transient or not self.retry_transient_only
        return False

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)`` under this policy.

        The final error is re-raised unchanged once attempts are exhausted
        or a non-retryable error occurs.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_seconds,
                max=self.backoff_max_seconds,
            ),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable: tenacity re-raises on exhaustion")


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(
        "retrying_external_call",
        attempt=retry_state.attempt_number,
        error=str(error) if error else None,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
    )
