"""
Retry, timing and fan-out helpers.

The SQL stores retry transient errors through ``with_retry``; the delivery
workflow times each cycle with ``track_performance`` and fans recipients out
over ``ParallelProcessor``.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, Hashable, Iterable, Optional

import structlog
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)
# tenacity's before_sleep_log needs a stdlib logger
retry_logger = logging.getLogger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying operation",
        function=getattr(retry_state.fn, "__name__", "unknown"),
        attempt=retry_state.attempt_number,
        error=str(error),
        error_type=type(error).__name__,
    )


def with_retry(
    max_attempts: int = 3,
    backoff_max: float = 10.0,
    retry_exceptions: tuple = (Exception,),
):
    """
    Retry ``retry_exceptions`` with exponential backoff.

    The last exception is re-raised unchanged once attempts run out, so
    callers can translate it into their own error type.
    """
    stdlib_log = before_sleep_log(retry_logger, logging.WARNING)

    def before_sleep(retry_state: RetryCallState) -> None:
        _log_retry(retry_state)
        stdlib_log(retry_state)

    def decorator(func: Callable) -> Callable:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=0.5, max=backoff_max),
            retry=retry_if_exception_type(retry_exceptions),
            before_sleep=before_sleep,
            reraise=True,
        )(func)

    return decorator


def track_performance(operation_name: str):
    """Log how long each call of the wrapped function takes."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            status = "failed"
            try:
                result = func(*args, **kwargs)
                status = "success"
                return result
            finally:
                log = logger.info if status == "success" else logger.error
                log(
                    "Operation timed",
                    operation=operation_name,
                    duration_seconds=round(time.perf_counter() - started, 3),
                    status=status,
                )

        return wrapper

    return decorator


@dataclass
class TaskOutcome:
    """Result or error of one task run by ParallelProcessor."""

    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ParallelProcessor:
    """Run independent tasks on a bounded thread pool."""

    def __init__(self, max_workers: int = 6):
        self.max_workers = max_workers

    def process_batch(
        self,
        items: Iterable[Hashable],
        processor_func: Callable[[Any], Any],
        timeout: Optional[float] = None,
    ) -> Dict[Any, TaskOutcome]:
        """
        Process items in parallel and wait for all of them.

        A failing item is recorded in its TaskOutcome; the remaining items
        keep running.

        Args:
            items: Hashable work items
            processor_func: Called once per item
            timeout: Optional overall timeout passed to ``as_completed``

        Returns:
            Mapping of item to TaskOutcome
        """
        outcomes: Dict[Any, TaskOutcome] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_item = {executor.submit(processor_func, item): item for item in items}

            for future in as_completed(future_to_item, timeout=timeout):
                item = future_to_item[future]
                try:
                    outcomes[item] = TaskOutcome(result=future.result())
                except Exception as e:
                    logger.error(
                        "Parallel processing error",
                        item=str(item)[:100],
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    outcomes[item] = TaskOutcome(error=e)

        return outcomes
