from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar


logger = logging.getLogger(__name__)
T = TypeVar("T")

# Bugs in the operation itself: retrying cannot help, so they propagate unchanged.
PROGRAMMING_ERRORS: tuple[type[Exception], ...] = (TypeError, AttributeError, NameError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    initial_delay_s: float = 3.0
    multiplier: float = 1.5
    max_delay_s: float = 15.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after the given (1-based) failed attempt."""
        delay = self.initial_delay_s * (self.multiplier ** max(attempt - 1, 0))
        return min(delay, self.max_delay_s)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=max_attempts,
            initial_delay_s=self.initial_delay_s,
            multiplier=self.multiplier,
            max_delay_s=self.max_delay_s,
        )


class RetryOutcome(str, Enum):
    OK = "ok"
    DEFINITIVE_FAILURE = "definitive_failure"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    outcome: RetryOutcome
    attempts: int
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.outcome is RetryOutcome.OK


def retry(
    operation: Callable[[int], T],
    *,
    is_definitive: Callable[[Exception], bool],
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> RetryResult[T]:
    """
    Run `operation(attempt)` until it returns, fails definitively, or the budget runs out.

    The operation receives the 1-based attempt number. Exceptions for which `is_definitive`
    returns True stop immediately; `PROGRAMMING_ERRORS` are re-raised as-is; every other exception
    consumes one attempt.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            value = operation(attempt)
        except PROGRAMMING_ERRORS:
            logger.error("%s raised a programming error on attempt %d", label, attempt, exc_info=True)
            raise
        except Exception as e:
            last_exc = e
            if is_definitive(e):
                logger.info("%s failed definitively on attempt %d/%d: %s", label, attempt, policy.max_attempts, e)
                return RetryResult(RetryOutcome.DEFINITIVE_FAILURE, attempts=attempt, error=e)
            if attempt >= policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d); retrying in %.2fs. (%s)",
                label,
                attempt,
                policy.max_attempts,
                delay,
                e,
            )
            sleep(delay)
            continue
        if attempt > 1:
            logger.info("%s succeeded on attempt %d/%d", label, attempt, policy.max_attempts)
        return RetryResult(RetryOutcome.OK, attempts=attempt, value=value)

    logger.warning("%s gave up after %d attempts: %s", label, policy.max_attempts, last_exc)
    return RetryResult(RetryOutcome.BUDGET_EXHAUSTED, attempts=policy.max_attempts, error=last_exc)
