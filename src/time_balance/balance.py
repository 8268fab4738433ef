"""Balance and timeline computations over the event log.

Everything here is a pure function of the events and an explicit ``now``;
nothing is cached between calls.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from .models import MeterEvent, TimelineDataPoint

_HOUR_SECONDS = 3600.0


def current_balance(events: Iterable[MeterEvent], now: datetime) -> timedelta:
    """Sum of ``duration * factor`` over all events, open ones measured to ``now``."""
    return sum((event.time_contribution(now) for event in events), timedelta())


def balance_hours(events: Iterable[MeterEvent], now: datetime) -> float:
    return current_balance(events, now).total_seconds() / _HOUR_SECONDS


def _weighted_hours(start: datetime, end: datetime, factor: float) -> float:
    return (end - start).total_seconds() / _HOUR_SECONDS * factor


def timeline(
    events: Iterable[MeterEvent], period: timedelta, now: datetime
) -> list[TimelineDataPoint]:
    """Return balance samples covering ``[now - period, now]``.

    Points are emitted at the window start, at every event start and end
    inside the window, and at ``now``. The first point carries the balance
    accrued before the window; the last equals the current balance.
    """
    window_start = now - period
    all_events = list(events)

    running = 0.0
    for event in all_events:
        if event.start_time < window_start:
            effective_end = event.end_time if event.end_time is not None else window_start
            effective_end = min(effective_end, window_start)
            running += _weighted_hours(event.start_time, effective_end, event.factor)

    points = [TimelineDataPoint(timestamp=window_start, balance_hours=running)]

    overlapping = sorted(
        (
            event
            for event in all_events
            if event.start_time <= now
            and (event.end_time if event.end_time is not None else now) >= window_start
        ),
        key=lambda event: event.start_time,
    )
    for event in overlapping:
        if event.start_time >= window_start:
            points.append(TimelineDataPoint(timestamp=event.start_time, balance_hours=running))

        effective_start = max(event.start_time, window_start)
        effective_end = min(event.end_time if event.end_time is not None else now, now)
        running += _weighted_hours(effective_start, effective_end, event.factor)

        if event.end_time is not None and event.end_time <= now:
            points.append(TimelineDataPoint(timestamp=event.end_time, balance_hours=running))

    points.append(TimelineDataPoint(timestamp=now, balance_hours=running))
    points.sort(key=lambda point: point.timestamp)
    return points


class BalanceEngine:
    """Binds the balance functions to a live event collection and a clock."""

    def __init__(self, events: Iterable[MeterEvent], clock) -> None:
        self._events = events
        self._clock = clock

    def current_balance(self) -> timedelta:
        return current_balance(self._events, self._clock())

    def timeline(self, period: timedelta) -> list[TimelineDataPoint]:
        return timeline(self._events, period, self._clock())
