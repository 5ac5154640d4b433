"""
Dispatch timing for message steps.

This module contains functionality for:
- Delay-day calculation from the moment the pointer landed on a step
- Send-day (weekday) filtering
- Send-window gating within a day

All functions are stateless; the runner calls ``next_dispatch_time`` and
dispatches when the returned instant is not after ``now``.
"""

import logging
from datetime import datetime, date, timedelta
import pytz

from coach_sequences.models.steps import MessageStep, WEEKDAYS
from coach_sequences.utils.error_handling import SchedulingConfigError
from .timezone import to_local, to_utc, local_instant

logger = logging.getLogger(__name__)

# Every non-empty weekday set contains a match within a week
MAX_DAY_SEARCH = 8


def validate_window(step: MessageStep):
    """Raise SchedulingConfigError if the step's send window is inverted or empty."""
    if step.send_window_end <= step.send_window_start:
        raise SchedulingConfigError(
            f"Step {step.step_order}: send window "
            f"{step.send_window_start.strftime('%H:%M')}-{step.send_window_end.strftime('%H:%M')} "
            f"is inverted (end must be after start)"
        )


def _is_send_date(step: MessageStep, day: date) -> bool:
    return step.any_day or WEEKDAYS[day.weekday()] in step.send_days


def next_send_date(step: MessageStep, day: date) -> date:
    """Get the first date on or after ``day`` whose weekday is allowed."""
    for offset in range(MAX_DAY_SEARCH):
        candidate = day + timedelta(days=offset)
        if _is_send_date(step, candidate):
            return candidate
    raise SchedulingConfigError(f"Step {step.step_order}: no valid send day in {sorted(step.send_days)}")


def is_send_day(step: MessageStep, instant: datetime, tz=pytz.UTC) -> bool:
    """Check if an instant falls on an allowed send day in ``tz``."""
    return _is_send_date(step, to_local(instant, tz).date())


def is_within_window(step: MessageStep, instant: datetime, tz=pytz.UTC) -> bool:
    """Check if an instant falls inside the step's [start, end) window on an allowed day."""
    local = to_local(instant, tz)
    if not _is_send_date(step, local.date()):
        return False
    start = local_instant(local.date(), step.send_window_start, tz)
    end = local_instant(local.date(), step.send_window_end, tz)
    return start <= to_utc(instant) < end


def next_dispatch_time(step: MessageStep, enrolled_at: datetime, step_entered_at: datetime,
                       now: datetime, tz=pytz.UTC) -> datetime:
    """
    Calculate the next legal dispatch instant for a message step.

    Args:
        step: The message step being scheduled
        enrolled_at: When the enrollment was created (naive UTC)
        step_entered_at: When the pointer landed on this step (naive UTC)
        now: Current instant (naive UTC)
        tz: Timezone the send window and send days are expressed in

    Returns:
        Naive UTC instant; equal to ``now`` when the step is dispatchable immediately

    Raises:
        SchedulingConfigError: If the send window is inverted
    """
    validate_window(step)

    now = to_utc(now)
    baselines = [to_utc(d) for d in (enrolled_at, step_entered_at) if d is not None]
    baseline = max(baselines) if baselines else now
    earliest_day = to_local(baseline, tz).date() + timedelta(days=step.delay_days)
    today = to_local(now, tz).date()

    day = next_send_date(step, max(earliest_day, today))
    for _ in range(MAX_DAY_SEARCH + 1):
        window_start = local_instant(day, step.send_window_start, tz)
        window_end = local_instant(day, step.send_window_end, tz)

        if now < window_start:
            return window_start
        if now < window_end:
            return now

        day = next_send_date(step, day + timedelta(days=1))

    raise SchedulingConfigError(f"Step {step.step_order}: could not find a dispatch window")
