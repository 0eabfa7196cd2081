from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import ValidationError


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    first = day.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def shift_month(day: date, count: int) -> date:
    """First day of the month ``count`` months away from ``day``'s month."""
    month_index = (day.year * 12) + (day.month - 1) + count
    return date(month_index // 12, (month_index % 12) + 1, 1)


def trailing_months(today: date, months: int) -> Period:
    """The window of ``months`` calendar months ending with today's month."""
    if months < 1:
        raise ValidationError("Window must cover at least one month")
    start = shift_month(today, -(months - 1))
    return Period(f"last_{months}_months", start, month_end(today))


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: date,
) -> Period:
    if not period or period == "all":
        return Period("all", date.min, date.max)
    if period == "last_month":
        last_month_end = month_start(today) - date.resolution
        return Period("last_month", month_start(last_month_end), last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValidationError("Custom period requires start and end dates")
        try:
            start_date = date.fromisoformat(start)
            end_date = date.fromisoformat(end)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if start_date > end_date:
            raise ValidationError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValidationError(f"Unknown period: {period}")

    return Period("this_month", month_start(today), month_end(today))
