"""
Exponential backoff with symmetric jitter.
"""

import random as _random
from collections.abc import Callable

from retrykit.core.retry.policy import RetryPolicy

RandomSource = Callable[[], float]


def calculate_delay(attempt: int, policy: RetryPolicy, random: RandomSource = _random.random) -> int:
    """
    Calculate the delay before a retry.

    Implements: capped = min(base_delay_ms * multiplier^attempt, max_delay_ms)
    With jitter: capped ± capped * jitter_factor, clamped at 0

    Args:
        attempt: Retry index (0 = delay before the first retry)
        policy: Resolved retry policy
        random: Source of floats in [0, 1)

    Returns:
        Delay in whole milliseconds
    """
    try:
        exponential = policy.base_delay_ms * (policy.backoff_multiplier**attempt)
    except OverflowError:
        exponential = policy.max_delay_ms
    capped = min(exponential, policy.max_delay_ms)

    # random() in [0, 1) -> factor in [-1, 1)
    jitter = capped * policy.jitter_factor * (random() * 2 - 1)

    return max(0, round(capped + jitter))


def delay_schedule(policy: RetryPolicy, random: RandomSource = _random.random) -> list[int]:
    """Delays for every retry the policy allows, in order."""
    return [calculate_delay(attempt, policy, random) for attempt in range(policy.max_retries)]
