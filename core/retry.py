# Bounded retry and snapshot/rollback helpers for integration side effects.

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar
import logging
import time

from config.app_config import INTEGRATION_MAX_ATTEMPTS, INTEGRATION_BACKOFF_SECONDS
from services.errors import WorkflowError

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")


@dataclass
class Attempt(Generic[T]):
    """Outcome of a guarded call: either a value or the last error."""
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    rolled_back: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _should_retry(exc: BaseException) -> bool:
    # Typed workflow errors (validation, bad state) are caller bugs, not transient
    if isinstance(exc, WorkflowError):
        return exc.retryable
    return True


def retry_call(
    operation: Callable[[], T],
    label: str,
    max_attempts: int = INTEGRATION_MAX_ATTEMPTS,
    backoff_seconds: float = INTEGRATION_BACKOFF_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Attempt[T]:
    """
    Call `operation` up to `max_attempts` times with linear backoff
    (attempt * backoff_seconds between tries).

    Never raises for failures of `operation`; the returned Attempt carries
    the last error instead.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return Attempt(value=operation(), attempts=attempt)
        except Exception as e:
            last_error = e
            logger.warning(f"{label}: attempt {attempt}/{max_attempts} failed: {e}")
            if not _should_retry(e):
                return Attempt(error=e, attempts=attempt)
            if attempt < max_attempts:
                sleep(backoff_seconds * attempt)
    logger.error(f"{label}: giving up after {max_attempts} attempts")
    return Attempt(error=last_error, attempts=max_attempts)


def run_with_rollback(
    snapshot: S,
    operation: Callable[[], T],
    rollback: Callable[[S, BaseException], None],
    label: str,
) -> Attempt[T]:
    """
    Run `operation`; if it raises, restore `snapshot` through `rollback`
    before returning the failure.

    A failing rollback is re-raised.
    """
    try:
        return Attempt(value=operation(), attempts=1)
    except Exception as e:
        logger.error(f"{label}: failed, rolling back: {e}")
        try:
            rollback(snapshot, e)
        except Exception as rollback_error:
            logger.critical(f"{label}: rollback failed: {rollback_error}")
            raise
        return Attempt(error=e, attempts=1, rolled_back=True)
