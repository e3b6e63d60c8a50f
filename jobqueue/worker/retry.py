"""
Retry policy.

Maps a job's retry count to either another attempt after an exponential
backoff or a permanent failure. The delay is applied by moving the job's
scheduled_time forward, never by sleeping inside a worker.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryDecision:
    """What to do with a job whose attempt just failed."""

    should_retry: bool
    delay_seconds: float = 0.0


def should_retry(retries: int, max_retries: int) -> bool:
    """
    Check whether a failure with this many prior retries is retried.

    Args:
        retries: Failed attempts already recorded on the job.
        max_retries: The job's retry ceiling.

    Returns:
        True if the job goes back to waiting, False if it fails for good.
    """
    return retries < max_retries


def backoff_delay(
    retries: int,
    base_delay: float,
    max_delay: float | None = None,
) -> float:
    """
    Exponential backoff: base_delay * 2 ** retries, optionally capped.

    Args:
        retries: Failed attempts already recorded, indexed from 0.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound on the delay, in seconds.

    Returns:
        Seconds to keep the job unclaimable.
    """
    delay = base_delay * (2 ** max(0, retries))
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def decide(
    retries: int,
    max_retries: int,
    base_delay: float,
    max_delay: float | None = None,
) -> RetryDecision:
    """Combine should_retry and backoff_delay into one decision."""
    if not should_retry(retries, max_retries):
        return RetryDecision(should_retry=False)
    return RetryDecision(
        should_retry=True,
        delay_seconds=backoff_delay(retries, base_delay, max_delay),
    )
