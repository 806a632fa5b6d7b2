"""
Bounded retry for transient posting failures.

Only StorageError (PostingFailed, StoreUnavailable) is retried.  The event
is resubmitted unchanged, so its idempotency key is reused and a posting
that actually committed before the failure surfaces as a replay instead of
a duplicate.  RejectedEvent and reversal errors are never retried.
"""

import time
from typing import Callable

from church_ledger.domain.dtos import PostingResult
from church_ledger.domain.events import BusinessEvent
from church_ledger.exceptions import StorageError
from church_ledger.logging_config import get_logger
from church_ledger.services.posting_service import PostingService

logger = get_logger("services.retry")

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.1


def post_with_retry(
    service: PostingService,
    event: BusinessEvent,
    attempts: int = DEFAULT_ATTEMPTS,
    backoff: float = DEFAULT_BACKOFF_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> PostingResult:
    """
    Post ``event``, retrying storage failures with linear backoff.

    Raises the last StorageError once ``attempts`` are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            return service.post_event(event)
        except StorageError as exc:
            if attempt == attempts - 1:
                logger.error(
                    "posting_retry_exhausted",
                    extra={
                        "idempotency_key": event.effective_idempotency_key,
                        "attempts": attempts,
                        "error": str(exc),
                    },
                )
                raise
            delay = backoff * (attempt + 1)
            logger.warning(
                "posting_retry",
                extra={
                    "idempotency_key": event.effective_idempotency_key,
                    "attempt": attempt + 1,
                    "delay_seconds": delay,
                    "error": str(exc),
                },
            )
            sleep(delay)

    raise AssertionError("unreachable")
