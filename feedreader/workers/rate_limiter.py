"""
Feed Reader - Rate Limiter

Self-throttling for the publish loop. Given a target events-per-second and the
time already spent on the current event, returns how long to wait before the
next one. Advisory only: a slow publish can still overrun the target interval
for that event.
"""

from __future__ import annotations

MILLIS_PER_SECOND = 1000


def next_delay(target_events_per_second: int | None, last_operation_ms: float) -> int:
    """
    Milliseconds to sleep before handling the next event.

    Args:
        target_events_per_second: Target rate; None or <= 0 means unlimited
        last_operation_ms: Time spent handling the current event

    Returns:
        Delay in milliseconds, never negative
    """
    if not target_events_per_second or target_events_per_second <= 0:
        return 0
    interval_ms = MILLIS_PER_SECOND / target_events_per_second
    return max(0, int(interval_ms - last_operation_ms))
