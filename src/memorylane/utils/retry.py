"""Bounded retry with linear backoff for image codec operations."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from ..config import get_retry_backoff_seconds, get_retry_max_attempts
from ..handlers.error import ErrorStage, TransientCodecError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry an operation up to ``max_attempts`` times.

    The delay before attempt ``n + 1`` is ``backoff_seconds * n``, so the
    default policy waits 1s then 2s.
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] | None = None

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(max_attempts=get_retry_max_attempts(), backoff_seconds=get_retry_backoff_seconds())

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * attempt

    def run(
        self,
        operation: Callable[[], T],
        operation_name: str,
        stage: ErrorStage | None = None,
        **context: Any,
    ) -> T:
        """
        Run ``operation`` until it succeeds or the attempts are exhausted.

        Args:
            operation: Zero-argument callable to execute
            operation_name: Event prefix used in log entries
            stage: Pipeline stage reported on the final error
            **context: Extra fields for every log entry

        Returns:
            The operation's result

        Raises:
            TransientCodecError: If every attempt failed
        """
        attempts = max(1, self.max_attempts)
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except self.retry_on as e:
                last_error = e
                logger.warning(
                    f"{operation_name}_attempt_failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                    **context,
                )
                if attempt < attempts:
                    delay = self.delay_for(attempt)
                    logger.info(f"{operation_name}_retrying", next_attempt=attempt + 1, delay=delay, **context)
                    if delay > 0:
                        (self.sleep or time.sleep)(delay)

        logger.error(f"{operation_name}_retries_exhausted", attempts=attempts, error=str(last_error), **context)
        raise TransientCodecError(
            f"{operation_name} failed after {attempts} attempts: {last_error}",
            code=f"{operation_name}_failed",
            stage=stage,
            details={"attempts": attempts, **context},
            retry_suggested=False,
            original_exception=last_error if isinstance(last_error, Exception) else None,
        ) from last_error
