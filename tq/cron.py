"""Five-field cron expressions: minute, hour, day of month, month, day of week."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

_MONTH_NAMES = {
    name: i + 1
    for i, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
    )
}
_DAY_NAMES = {name: i for i, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}

_FIELDS = (
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day of month", 1, 31, {}),
    ("month", 1, 12, _MONTH_NAMES),
    ("day of week", 0, 6, _DAY_NAMES),
)

_SEARCH_YEARS = 5


class CronError(ValueError):
    """Raised for an invalid cron expression."""


@dataclass(frozen=True)
class CronSchedule:
    """A parsed cron schedule."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    days_star: bool = False
    weekdays_star: bool = False

    def _day_matches(self, moment: datetime) -> bool:
        dom = moment.day in self.days
        dow = moment.isoweekday() % 7 in self.weekdays
        if self.days_star or self.weekdays_star:
            return dom and dow
        return dom or dow

    def next(self, after: datetime) -> datetime | None:
        """Return the first matching minute strictly after ``after``, or None."""
        t = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = after.year + _SEARCH_YEARS
        while t.year <= limit:
            if t.month not in self.months:
                year, month = (t.year + 1, 1) if t.month == 12 else (t.year, t.month + 1)
                t = t.replace(year=year, month=month, day=1, hour=0, minute=0)
            elif not self._day_matches(t):
                t = t.replace(hour=0, minute=0) + timedelta(days=1)
            elif t.hour not in self.hours:
                t = t.replace(minute=0) + timedelta(hours=1)
            elif t.minute not in self.minutes:
                t += timedelta(minutes=1)
            else:
                return t
        return None


def _value(text: str, names: dict[str, int], field: str) -> int:
    lowered = text.lower()
    if lowered in names:
        return names[lowered]
    try:
        return int(text)
    except ValueError:
        raise CronError(f"failed to parse {field} value {text!r}") from None


def _parse_field(expr: str, low: int, high: int, names: dict[str, int], field: str) -> tuple[frozenset[int], bool]:
    values: set[int] = set()
    star = False
    for part in expr.split(","):
        range_part, slash, step_text = part.partition("/")
        step = 1
        if slash:
            try:
                step = int(step_text)
            except ValueError:
                raise CronError(f"invalid step {step_text!r} in {field}") from None
            if step <= 0:
                raise CronError(f"step must be positive in {field}: {part!r}")
        if range_part in ("*", "?"):
            start, end = low, high
            if step == 1:
                star = True
        else:
            first, dash, last = range_part.partition("-")
            start = _value(first, names, field)
            if dash:
                end = _value(last, names, field)
            elif slash:
                end = high
            else:
                end = start
        if start < low:
            raise CronError(f"{field} beginning of range ({start}) below minimum ({low}): {part!r}")
        if end > high:
            raise CronError(f"{field} end of range ({end}) above maximum ({high}): {part!r}")
        if start > end:
            raise CronError(f"{field} beginning of range ({start}) beyond end of range ({end}): {part!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values), star


def parse_cron(expr: str) -> CronSchedule:
    """Parse a standard five-field cron expression."""
    fields = expr.split()
    if len(fields) != len(_FIELDS):
        raise CronError(f"expected exactly {len(_FIELDS)} fields, found {len(fields)}: {expr!r}")
    parsed = [_parse_field(text, low, high, names, field) for text, (field, low, high, names) in zip(fields, _FIELDS)]
    return CronSchedule(
        minutes=parsed[0][0],
        hours=parsed[1][0],
        days=parsed[2][0],
        months=parsed[3][0],
        weekdays=parsed[4][0],
        days_star=parsed[2][1],
        weekdays_star=parsed[4][1],
    )