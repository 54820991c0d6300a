"""Bounded retry for pool transactions that hit transient database conflicts."""

import functools
import logging

from sqlalchemy.exc import OperationalError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import settings
from .exceptions import TransientConflictError
from .observability import metrics_collector

logger = logging.getLogger(__name__)


_log_before_sleep = before_sleep_log(logger, logging.WARNING)


def _before_sleep(retry_state) -> None:
    metrics_collector.record_conflict_retry(retry_state.fn.__name__)
    _log_before_sleep(retry_state)


def retry_on_conflict(func):
    """
    Retry an async pool operation when the database reports a conflict.

    Lock timeouts, serialization failures and deadlocks surface from
    SQLAlchemy as ``OperationalError``. The wrapped operation must roll its
    session back before re-raising so each attempt starts clean. Domain
    errors pass straight through; only exhaustion becomes a
    ``TransientConflictError``.
    """
    attempts = settings.conflict_retry_attempts

    retrying = retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(
            multiplier=settings.conflict_retry_backoff_seconds,
            max=settings.conflict_retry_max_backoff_seconds,
        ),
        retry=retry_if_exception_type(OperationalError),
        before_sleep=_before_sleep,
        reraise=True,
    )(func)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await retrying(*args, **kwargs)
        except OperationalError as e:
            logger.error(
                "Pool operation failed after conflict retries",
                extra={"operation": func.__name__, "attempts": attempts, "error": str(e)}
            )
            raise TransientConflictError(operation=func.__name__, attempts=attempts) from e

    return wrapper
