"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from .controller import AccountController
from .models import MeterEvent, TimelineDataPoint


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, controller: AccountController) -> None:
        self.controller = controller

    def print_status(self) -> None:
        now = self.controller.now()
        balance = self.controller.current_balance()
        active = self.controller.active_event()
        print(f"Balance: {format_signed_duration(balance.total_seconds())}")
        if active is None:
            print("Nothing is running.")
        else:
            running = active.duration(now).total_seconds()
            print(
                f"Running: {active.meter_name} (x{active.factor:g}) for {format_duration(running)}"
            )
        print()
        print("Meters:")
        for position, meter in enumerate(self.controller.ordered_meters(), start=1):
            marker = "*" if active is not None and active.meter_id == meter.id else " "
            print(f" {marker} {position}. {meter.name:<40} x{meter.factor:g}")

    def print_events(self, limit: Optional[int] = 20) -> None:
        events = recent_events(self.controller.events, limit)
        if not events:
            print("No events recorded.")
            return
        now = self.controller.now()
        for event in events:
            end = _format_timestamp(event.end_time) if event.end_time else "running"
            contribution = event.time_contribution(now).total_seconds()
            print(
                f"{event.id}  {_format_timestamp(event.start_time)} -> {end:<19}  "
                f"{event.meter_name[:20]:<20} {format_signed_duration(contribution)}"
            )
            if event.comment:
                print(f"    {event.comment}")

    def print_timeline(self, period: timedelta, samples: int = 12) -> None:
        points = self.controller.timeline(period)
        print(f"Timeline for the last {format_duration(period.total_seconds())}")
        print("-" * 40)
        for point in downsample(points, samples):
            hours = point.balance_hours
            print(
                f"{_format_timestamp(point.timestamp)}  "
                f"{format_signed_duration(hours * 3600):>10}"
            )


def recent_events(events: Iterable[MeterEvent], limit: Optional[int]) -> list[MeterEvent]:
    ordered = sorted(events, key=lambda event: event.start_time, reverse=True)
    return ordered[:limit] if limit else ordered


def downsample(points: list[TimelineDataPoint], samples: int) -> list[TimelineDataPoint]:
    """Keep the first and last points and an even spread in between."""
    if samples < 2 or len(points) <= samples:
        return points
    step = (len(points) - 1) / (samples - 1)
    return [points[round(index * step)] for index in range(samples)]


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_signed_duration(seconds: float) -> str:
    sign = "-" if round(seconds) < 0 else "+"
    return sign + format_duration(abs(seconds))


def _format_timestamp(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")
