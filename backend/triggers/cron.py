"""Cron expressions for scheduled workflows.

Standard 5-field expressions (minute hour day-of-month month day-of-week)
with ``*``, lists, ranges and ``*/step``. Field parsing is delegated to
Celery's crontab parser; day-of-week 0 is Sunday. A time matches when every
field matches.
"""

from datetime import datetime

from celery.schedules import ParseException, crontab


def _crontab_from_string(expr: str) -> crontab:
    """Parse a standard 5-field cron expression into a Celery crontab.

    Fields: minute hour day_of_month month_of_year day_of_week
    """
    parts = (expr or "").strip().split()
    if len(parts) != 5:
        raise ValueError(f'Invalid cron expression: "{expr}" (expected 5 fields, got {len(parts)})')
    try:
        return crontab(
            minute=parts[0],
            hour=parts[1],
            day_of_month=parts[2],
            month_of_year=parts[3],
            day_of_week=parts[4],
        )
    except (ParseException, ValueError) as e:
        raise ValueError(f'Invalid cron expression: "{expr}" ({e})') from e


class CronSchedule:
    """A parsed cron expression that can be matched against a datetime."""

    def __init__(self, expression: str):
        self.expression = expression.strip()
        self._crontab = _crontab_from_string(self.expression)

    @property
    def minutes(self) -> set[int]:
        return set(self._crontab.minute)

    @property
    def hours(self) -> set[int]:
        return set(self._crontab.hour)

    @property
    def days_of_month(self) -> set[int]:
        return set(self._crontab.day_of_month)

    @property
    def months(self) -> set[int]:
        return set(self._crontab.month_of_year)

    @property
    def days_of_week(self) -> set[int]:
        return set(self._crontab.day_of_week)

    def matches(self, when: datetime) -> bool:
        # datetime.weekday() is Monday=0; cron counts from Sunday=0
        weekday = (when.weekday() + 1) % 7
        return (
            when.minute in self._crontab.minute
            and when.hour in self._crontab.hour
            and when.day in self._crontab.day_of_month
            and when.month in self._crontab.month_of_year
            and weekday in self._crontab.day_of_week
        )

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"
