"""Due-date arithmetic for recurring rules.

Everything here is pure: no session, no clock.  Weekdays use the client
convention 0 = Sunday … 6 = Saturday.
"""

from __future__ import annotations

from calendar import monthrange
from collections.abc import Iterator
from datetime import date, timedelta

from recurring_engine.app.models.recurring import FrequencyType
from recurring_engine.app.services.errors import InvalidFrequencyConfig


# ─── Helpers ─────────────────────────────────────────────────────────────────


def weekday_index(d: date) -> int:
    """Return the weekday of *d* with Sunday = 0."""
    return (d.weekday() + 1) % 7


def _add_months(d: date, months: int, anchor_day: int | None = None) -> date:
    """Add *months* calendar months to *d*, clamping to end-of-month.

    With *anchor_day* the result lands on that day of the target month (or its
    last day when the month is shorter) instead of on ``d.day``, so a rule
    anchored to the 31st never drifts after passing through a short month.
    """
    month = d.month - 1 + months
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(anchor_day or d.day, monthrange(year, month)[1])
    return date(year, month, day)


# ─── Validation ──────────────────────────────────────────────────────────────


def validate_frequency_config(
    frequency: FrequencyType | str,
    interval: int,
    anchor_weekday: int | None = None,
    anchor_day_of_month: int | None = None,
) -> FrequencyType:
    """Return the parsed frequency or raise InvalidFrequencyConfig."""
    try:
        freq = FrequencyType(frequency)
    except ValueError:
        raise InvalidFrequencyConfig(f"Invalid frequency: {frequency}")

    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise InvalidFrequencyConfig(f"Frequency interval must be a positive integer, got {interval!r}")

    if anchor_weekday is not None:
        if freq != FrequencyType.WEEKLY:
            raise InvalidFrequencyConfig(f"Anchor weekday is only valid for WEEKLY rules, not {freq.value}")
        if not 0 <= anchor_weekday <= 6:
            raise InvalidFrequencyConfig(f"Anchor weekday must be between 0 and 6, got {anchor_weekday}")

    if anchor_day_of_month is not None:
        if freq not in (FrequencyType.MONTHLY, FrequencyType.YEARLY):
            raise InvalidFrequencyConfig(
                f"Anchor day of month is only valid for MONTHLY or YEARLY rules, not {freq.value}"
            )
        if not 1 <= anchor_day_of_month <= 31:
            raise InvalidFrequencyConfig(
                f"Anchor day of month must be between 1 and 31, got {anchor_day_of_month}"
            )

    return freq


# ─── Calculator ──────────────────────────────────────────────────────────────


def compute_next_due_date(
    current_due: date,
    frequency: FrequencyType | str,
    interval: int = 1,
    anchor_weekday: int | None = None,
    anchor_day_of_month: int | None = None,
) -> date:
    """Return the occurrence that follows *current_due*."""
    freq = validate_frequency_config(frequency, interval, anchor_weekday, anchor_day_of_month)

    if freq == FrequencyType.DAILY:
        return current_due + timedelta(days=interval)

    if freq == FrequencyType.WEEKLY:
        next_due = current_due + timedelta(weeks=interval)
        if anchor_weekday is not None:
            # Anchor wins over naive addition: roll forward to the anchor day
            next_due += timedelta(days=(anchor_weekday - weekday_index(next_due)) % 7)
        return next_due

    if freq == FrequencyType.MONTHLY:
        return _add_months(current_due, interval, anchor_day_of_month)

    # YEARLY
    return _add_months(current_due, 12 * interval, anchor_day_of_month)


def first_due_date(
    start_date: date,
    frequency: FrequencyType | str,
    anchor_weekday: int | None = None,
    anchor_day_of_month: int | None = None,
) -> date:
    """Return the first occurrence on or after *start_date* honouring anchors."""
    freq = validate_frequency_config(frequency, 1, anchor_weekday, anchor_day_of_month)

    if freq == FrequencyType.WEEKLY and anchor_weekday is not None:
        return start_date + timedelta(days=(anchor_weekday - weekday_index(start_date)) % 7)

    if anchor_day_of_month is not None:
        same_period = _add_months(start_date, 0, anchor_day_of_month)
        if same_period >= start_date:
            return same_period
        step = 1 if freq == FrequencyType.MONTHLY else 12
        return _add_months(start_date, step, anchor_day_of_month)

    return start_date


def iter_due_dates(
    first: date,
    frequency: FrequencyType | str,
    interval: int = 1,
    anchor_weekday: int | None = None,
    anchor_day_of_month: int | None = None,
    count: int = 12,
) -> Iterator[date]:
    """Yield *count* successive occurrences starting with *first*."""
    current = first
    for _ in range(count):
        yield current
        current = compute_next_due_date(
            current, frequency, interval, anchor_weekday, anchor_day_of_month,
        )


def convert_days_to_frequency(frequency_days: int) -> tuple[FrequencyType, int]:
    """Map a period expressed in days onto a (frequency, interval) pair."""
    if frequency_days < 1:
        raise InvalidFrequencyConfig(f"Period must be at least one day, got {frequency_days}")

    common: dict[int, tuple[FrequencyType, int]] = {
        1: (FrequencyType.DAILY, 1),
        7: (FrequencyType.WEEKLY, 1),
        14: (FrequencyType.WEEKLY, 2),
        30: (FrequencyType.MONTHLY, 1),
        31: (FrequencyType.MONTHLY, 1),
        60: (FrequencyType.MONTHLY, 2),
        61: (FrequencyType.MONTHLY, 2),
        90: (FrequencyType.MONTHLY, 3),
        91: (FrequencyType.MONTHLY, 3),
        180: (FrequencyType.MONTHLY, 6),
        183: (FrequencyType.MONTHLY, 6),
        365: (FrequencyType.YEARLY, 1),
        366: (FrequencyType.YEARLY, 1),
    }
    if frequency_days in common:
        return common[frequency_days]
    if frequency_days % 365 == 0:
        return FrequencyType.YEARLY, frequency_days // 365
    if frequency_days % 30 == 0:
        return FrequencyType.MONTHLY, frequency_days // 30
    if frequency_days % 7 == 0:
        return FrequencyType.WEEKLY, frequency_days // 7
    return FrequencyType.DAILY, frequency_days
