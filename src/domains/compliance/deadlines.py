"""Business-day deadline arithmetic over a regional calendar.

All calendar decisions happen in the region's configured timezone: an
aware ``start`` is converted into it, a naive ``start`` is taken to be
local already. The returned deadline keeps the local wall-clock time of
``start`` on the deadline date.
"""

from datetime import date, datetime, timedelta
from typing import NamedTuple

from .config import RegionalConfig
from .errors import ConfigurationError, ValidationError
from .holidays import holidays_for_year
from .models import DeadlineStatus, ReportType

# More consecutive non-business days than this means the calendar is broken.
_MAX_GAP_DAYS = 366


class DeadlineState(NamedTuple):
    status: DeadlineStatus
    days_remaining: int
    message: str


def _localize(moment: datetime, config: RegionalConfig) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=config.tz)
    return moment.astimezone(config.tz)


def is_holiday(day: date, config: RegionalConfig) -> bool:
    return day in holidays_for_year(config.holidays, day.year)


def is_business_day(day: date, config: RegionalConfig) -> bool:
    return day.weekday() in config.workweek and not is_holiday(day, config)


def next_business_day(day: date, config: RegionalConfig) -> date:
    """First business day strictly after ``day``."""
    current = day
    for _ in range(_MAX_GAP_DAYS):
        current += timedelta(days=1)
        if is_business_day(current, config):
            return current
    raise ConfigurationError(
        f"{config.region}: no business day within {_MAX_GAP_DAYS} days of {day}"
    )


def add_business_days(start: datetime, business_days: int, config: RegionalConfig) -> datetime:
    """Deadline ``business_days`` qualifying days after ``start``.

    ``start`` itself is never counted, so a start on a weekend or holiday
    begins counting from the next business day. ``business_days=0``
    returns ``start`` (localized).
    """
    if business_days < 0:
        raise ValidationError("business_days", "must be >= 0")
    local = _localize(start, config)
    current = local.date()
    for _ in range(business_days):
        current = next_business_day(current, config)
    return local.replace(year=current.year, month=current.month, day=current.day)


def business_days_between(start: date, end: date, config: RegionalConfig) -> int:
    """Business days in ``(start, end]``; negative when ``end`` precedes ``start``."""
    if end < start:
        return -business_days_between(end, start, config)
    count = 0
    current = start
    while current < end:
        current += timedelta(days=1)
        if is_business_day(current, config):
            count += 1
    return count


def business_days_remaining(deadline: datetime, as_of: datetime, config: RegionalConfig) -> int:
    """Business days left until ``deadline``, floored at 0 once the date has passed."""
    today = _localize(as_of, config).date()
    due = _localize(deadline, config).date()
    if due <= today:
        return 0
    return business_days_between(today, due, config)


def deadline_status(deadline: datetime, as_of: datetime, config: RegionalConfig) -> DeadlineState:
    """Classify a deadline: overdue, critical (<=1 day), warning (<=3 days), ok."""
    today = _localize(as_of, config).date()
    due = _localize(deadline, config).date()
    if due < today:
        return DeadlineState(DeadlineStatus.OVERDUE, 0, "Deadline has passed")

    remaining = business_days_remaining(deadline, as_of, config)
    if remaining <= 1:
        message = "Due today" if remaining == 0 else "1 business day remaining"
        return DeadlineState(DeadlineStatus.CRITICAL, remaining, message)
    if remaining <= 3:
        return DeadlineState(
            DeadlineStatus.WARNING, remaining, f"{remaining} business days remaining"
        )
    return DeadlineState(DeadlineStatus.OK, remaining, f"{remaining} business days remaining")


def calculate_ttr_deadline(transaction_date: datetime, config: RegionalConfig) -> datetime:
    return add_business_days(transaction_date, config.deadlines.ttr_submission_days, config)


def calculate_smr_deadline(
    suspicion_date: datetime, config: RegionalConfig, urgent: bool = False
) -> datetime:
    """SMR deadline; ``urgent`` (terrorism financing) uses clock hours, not business days."""
    if urgent:
        return _localize(suspicion_date, config) + timedelta(
            hours=config.deadlines.smr_urgent_hours
        )
    return add_business_days(suspicion_date, config.deadlines.smr_submission_days, config)


def calculate_ifti_deadline(transfer_date: datetime, config: RegionalConfig) -> datetime:
    return add_business_days(transfer_date, config.deadlines.ifti_submission_days, config)


def report_deadline(
    report_type: ReportType, start: datetime, config: RegionalConfig, urgent: bool = False
) -> datetime:
    match report_type:
        case ReportType.TTR:
            return calculate_ttr_deadline(start, config)
        case ReportType.SMR:
            return calculate_smr_deadline(start, config, urgent=urgent)
        case ReportType.IFTI:
            return calculate_ifti_deadline(start, config)
    raise ValidationError("report_type", f"unknown report type {report_type!r}")
