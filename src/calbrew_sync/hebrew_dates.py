"""Hebrew <-> Gregorian date conversion.

Thin wrapper over ``pyluach`` using its month numbering
(Nisan = 1 ... Adar = 12, Adar II = 13 in leap years).
"""

from datetime import date, datetime
from typing import Callable, Optional

from pyluach.hebrewcal import HebrewDate, Year
import pytz

ADAR = 12
ADAR_II = 13

# (day, month, year) -> Gregorian date
DateConverter = Callable[[int, int, int], date]


def is_leap_year(year: int) -> bool:
    """Whether a Hebrew year has thirteen months."""
    return Year(year).leap


def to_gregorian(day: int, month: int, year: int) -> date:
    """Convert a Hebrew date to its Gregorian date.

    Adar II in a non-leap year falls on Adar. A day 30 in a 29-day month
    rolls over to the first of the following month.

    Raises:
        ValueError: If the year or month is outside the calendar
    """
    if month == ADAR_II and not is_leap_year(year):
        month = ADAR
    # Count from the first of the month so short months roll over
    return (HebrewDate(year, month, 1) + (day - 1)).to_pydate()


def current_hebrew_year(today: Optional[date] = None, tz: Optional[pytz.BaseTzInfo] = None) -> int:
    """Hebrew year containing ``today`` (defaults to the current date in ``tz``)."""
    if today is None:
        today = datetime.now(tz or pytz.UTC).date()
    return HebrewDate.from_pydate(today).year
