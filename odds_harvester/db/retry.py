"""Bounded retry for transient database failures."""

from __future__ import annotations

import sqlite3
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

log = structlog.get_logger()

T = TypeVar("T")

TRANSIENT_ERRORS = (sqlite3.OperationalError, OSError)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "db_operation_retry",
        attempt=state.attempt_number,
        wait_seconds=state.next_action.sleep if state.next_action else None,
        error=repr(exc),
    )


async def with_db_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 5.0,
) -> T:
    """Run ``operation``, retrying transient failures with a fixed backoff.

    The last failure is re-raised once ``attempts`` are exhausted.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await operation()
    raise AssertionError("unreachable")  # pragma: no cover
