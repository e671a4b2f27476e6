from __future__ import annotations

import random
from datetime import datetime, timedelta

from ..jobs import BackoffPolicy


def compute_backoff(policy: BackoffPolicy, attempt: int, jitter: float = 0.0) -> float:
    """Compute the retry delay in seconds after ``attempt`` failed attempts.

    Exponential policies double ``delay_ms`` per attempt, starting from the
    base delay after the first failure.
    """
    if policy.type == "fixed":
        delay_ms = policy.delay_ms
    else:
        delay_ms = policy.delay_ms * 2 ** max(attempt - 1, 0)
    delay = delay_ms / 1000
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


def next_attempt_at(policy: BackoffPolicy, attempt: int, now: datetime) -> datetime:
    """Return when a job that failed ``attempt`` times becomes ready again."""
    return now + timedelta(seconds=compute_backoff(policy, attempt))
