"""Working-day calendar for slot generation.

Weekdays come from WORKING_DAYS; public holidays come from the ``holidays``
package when HOLIDAY_CALENDAR names a country (e.g. "US").
"""

from datetime import date
from functools import lru_cache

import holidays

from callgate.core.config import settings


@lru_cache(maxsize=32)
def get_holidays(country: str, year: int) -> frozenset[date]:
    """Cache holiday sets per (country, year)."""
    return frozenset(holidays.country_holidays(country, years=year).keys())


def is_holiday(day: date) -> bool:
    country = settings.HOLIDAY_CALENDAR.strip().upper()
    if not country:
        return False
    return day in get_holidays(country, day.year)


def is_working_day(day: date) -> bool:
    """Configured weekday and not a holiday."""
    if day.weekday() not in settings.working_days_list:
        return False
    return not is_holiday(day)
