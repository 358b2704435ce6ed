"""
PM frequency calculator.

All PM date arithmetic lives here. Operates on calendar dates only:
datetimes are reduced to their date before any arithmetic, so DST and
timezone offsets never shift a due date.

Month-based steps use ``relativedelta``, which clamps to the last day of the
target month (Jan 31 + 1 month = Feb 28/29, Feb 29 + 1 year = Feb 28).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Dict, Union

from dateutil.relativedelta import relativedelta

from .models import PMFrequency

FREQUENCY_STEPS: Dict[PMFrequency, Union[timedelta, relativedelta]] = {
    PMFrequency.DAILY: timedelta(days=1),
    PMFrequency.WEEKLY: timedelta(days=7),
    PMFrequency.MONTHLY: relativedelta(months=1),
    PMFrequency.QUARTERLY: relativedelta(months=3),
    PMFrequency.ANNUALLY: relativedelta(years=1),
}


def as_calendar_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def next_due_date(last_date: Union[date, datetime], frequency: Any) -> date:
    """
    Next due date after `last_date` for a PM frequency.

    Raises:
        InvalidFrequency: if `frequency` is not a supported unit.
    """
    step = FREQUENCY_STEPS[PMFrequency.parse(frequency)]
    return as_calendar_date(last_date) + step
