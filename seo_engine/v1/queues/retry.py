"""
Retry policy: what happens to a job after its handler returns or raises.
"""

from dataclasses import dataclass
from enum import Enum

from seo_engine.v1.queues.config import QueueConfig
from seo_engine.v1.queues.errors import EntityGoneError, JobError


class Outcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    RETRY = "retry"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryDecision:
    outcome: Outcome
    delay_ms: int = 0


def compute_backoff_ms(backoff_base_ms: int, retry_count: int) -> int:
    """Exponential backoff without jitter: ``base * 2^retry_count``."""
    if retry_count < 0:
        raise ValueError("retry_count must be >= 0")
    return backoff_base_ms * (2**retry_count)


def decide(config: QueueConfig, retry_count: int, error: BaseException) -> RetryDecision:
    """
    Classify a handler failure.

    Entity-gone errors complete as skipped, other job errors that are not
    ``retryable`` fail at once, everything else is retried while
    ``retry_count < retry_attempts``.
    """
    if isinstance(error, EntityGoneError):
        return RetryDecision(Outcome.SKIPPED)
    if isinstance(error, JobError) and not error.retryable:
        return RetryDecision(Outcome.FAILED)
    if retry_count < config.retry_attempts:
        return RetryDecision(
            Outcome.RETRY, compute_backoff_ms(config.backoff_base_ms, retry_count)
        )
    return RetryDecision(Outcome.FAILED)
