"""Holiday pattern parsing for regional business-day calendars.

Supported patterns:
  FIXED:MM-DD                      e.g. FIXED:12-25
  EASTER_FRIDAY / EASTER_SUNDAY / EASTER_MONDAY
  <NTH>_<DOW>_<MON>                e.g. FIRST_MON_MAY, LAST_MON_AUG, FOURTH_THU_NOV
  YYYY-MM-DD                       explicit one-off date (lunar holidays, proclamations)
"""

import re
from calendar import monthrange
from collections.abc import Callable
from datetime import date, timedelta
from functools import lru_cache

from .errors import ConfigurationError

HolidayRule = Callable[[int], date | None]

_NTH = {"FIRST": 1, "SECOND": 2, "THIRD": 3, "FOURTH": 4, "LAST": -1}
_DOW = {"MON": 0, "TUE": 1, "WED": 2, "THU": 3, "FRI": 4, "SAT": 5, "SUN": 6}
_MON = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

_NTH_WEEKDAY_RE = re.compile(
    r"^(FIRST|SECOND|THIRD|FOURTH|LAST)_(MON|TUE|WED|THU|FRI|SAT|SUN)_"
    r"(JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)$"
)
_FIXED_RE = re.compile(r"^FIXED:(\d{2})-(\d{2})$")
_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def easter_sunday(year: int) -> date:
    """Anonymous Gregorian computus."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def nth_weekday_of_month(year: int, month: int, weekday: int, nth: int) -> date:
    """nth occurrence of ``weekday`` (0=Monday) in a month; ``nth=-1`` is the last."""
    if nth == -1:
        last = date(year, month, monthrange(year, month)[1])
        return last - timedelta(days=(last.weekday() - weekday) % 7)
    first = date(year, month, 1)
    return first + timedelta(days=(weekday - first.weekday()) % 7, weeks=nth - 1)


def _fixed(month: int, day: int) -> HolidayRule:
    def rule(year: int) -> date | None:
        try:
            return date(year, month, day)
        except ValueError:
            # FIXED:02-29 outside leap years
            return None

    return rule


def _easter_offset(days: int) -> HolidayRule:
    return lambda year: easter_sunday(year) + timedelta(days=days)


def _nth_weekday(month: int, weekday: int, nth: int) -> HolidayRule:
    return lambda year: nth_weekday_of_month(year, month, weekday, nth)


def _explicit(d: date) -> HolidayRule:
    return lambda year: d if year == d.year else None


@lru_cache(maxsize=256)
def parse_holiday_pattern(pattern: str) -> HolidayRule:
    """Compile a holiday pattern into a ``year -> date | None`` rule.

    Raises ConfigurationError for anything unrecognised so that a bad
    calendar is caught when the regional config is built.
    """
    if m := _FIXED_RE.match(pattern):
        month, day = int(m.group(1)), int(m.group(2))
        try:
            date(2024, month, day)
        except ValueError as exc:
            raise ConfigurationError(f"invalid fixed holiday {pattern!r}") from exc
        return _fixed(month, day)

    if pattern == "EASTER_FRIDAY":
        return _easter_offset(-2)
    if pattern == "EASTER_SUNDAY":
        return _easter_offset(0)
    if pattern == "EASTER_MONDAY":
        return _easter_offset(1)

    if m := _NTH_WEEKDAY_RE.match(pattern):
        nth, dow, mon = m.groups()
        return _nth_weekday(_MON[mon], _DOW[dow], _NTH[nth])

    if _ISO_RE.match(pattern):
        try:
            return _explicit(date.fromisoformat(pattern))
        except ValueError as exc:
            raise ConfigurationError(f"invalid holiday date {pattern!r}") from exc

    raise ConfigurationError(f"unrecognised holiday pattern {pattern!r}")


@lru_cache(maxsize=512)
def holidays_for_year(patterns: tuple[str, ...], year: int) -> frozenset[date]:
    """Resolve every pattern to its concrete date in ``year``."""
    resolved = (parse_holiday_pattern(p)(year) for p in patterns)
    return frozenset(d for d in resolved if d is not None)
