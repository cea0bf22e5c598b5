import logging
import re
from calendar import monthrange
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import pytz
from pydantic import BaseModel

logger = logging.getLogger(__name__)

MONTHS = {
    'january': 1, 'jan': 1,
    'february': 2, 'feb': 2,
    'march': 3, 'mar': 3,
    'april': 4, 'apr': 4,
    'may': 5,
    'june': 6, 'jun': 6,
    'july': 7, 'jul': 7,
    'august': 8, 'aug': 8,
    'september': 9, 'sep': 9, 'sept': 9,
    'october': 10, 'oct': 10,
    'november': 11, 'nov': 11,
    'december': 12, 'dec': 12,
}

# "may" is also a modal verb, so it only counts as a month in these phrasings
MAY_AS_MONTH = re.compile(r'(may\s+month|month\s+of\s+may|\bin\s+may\b|during\s+may)')
MONTH_PATTERN = re.compile(
    r'\b(' + '|'.join(sorted((m for m in MONTHS if m != 'may'), key=len, reverse=True)) + r')\b'
)
LAST_N_DAYS = re.compile(r'\b(?:last|past)\s+(\d{1,3})\s+days?\b')
YEAR_PATTERN = re.compile(r'\b(20\d{2})\b')


class TimeRange(BaseModel):
    start_date: str
    end_date: str
    type: str
    description: str = ''


def _get_timezone(timezone: Optional[str]):
    try:
        return pytz.timezone(timezone or 'UTC')
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {timezone}, using UTC")
        return pytz.utc


def _day_start(tz, year: int, month: int, day: int) -> datetime:
    return tz.localize(datetime(year, month, day))


def _day_end(tz, year: int, month: int, day: int) -> datetime:
    return tz.localize(datetime(year, month, day, 23, 59, 59, 999999))


def _to_utc(value: datetime) -> str:
    return value.astimezone(pytz.utc).isoformat()


def _make_range(start: datetime, end: datetime, range_type: str, description: str) -> TimeRange:
    return TimeRange(
        start_date=_to_utc(start),
        end_date=_to_utc(end),
        type=range_type,
        description=description
    )


def detect_month(message: str) -> Optional[str]:
    """Return the month mentioned in the message, if any"""
    lower = message.lower()
    if MAY_AS_MONTH.search(lower):
        return 'may'
    match = MONTH_PATTERN.search(lower)
    return match.group(1) if match else None


def _month_range(tz, now: datetime, month_name: str, message: str) -> TimeRange:
    month = MONTHS[month_name]
    year_match = YEAR_PATTERN.search(message)
    if year_match:
        year = int(year_match.group(1))
    else:
        # A month later than the current one without a year refers to last year
        year = now.year if month <= now.month else now.year - 1

    last_day = monthrange(year, month)[1]
    return _make_range(
        _day_start(tz, year, month, 1),
        _day_end(tz, year, month, last_day),
        'specificMonth',
        f"{month_name} {year}"
    )


def range_for_type(range_type: str, timezone: str = 'UTC', now: Optional[datetime] = None) -> Optional[TimeRange]:
    """Compute a concrete range for a named period in the user's timezone"""
    tz = _get_timezone(timezone)
    now = now.astimezone(tz) if now else datetime.now(tz)
    today = now.date()

    if range_type == 'today':
        return _make_range(_day_start(tz, today.year, today.month, today.day),
                           _day_end(tz, today.year, today.month, today.day), 'today', 'today')

    if range_type == 'yesterday':
        day = today - timedelta(days=1)
        return _make_range(_day_start(tz, day.year, day.month, day.day),
                           _day_end(tz, day.year, day.month, day.day), 'yesterday', 'yesterday')

    if range_type in ('week', 'lastWeek'):
        monday = today - timedelta(days=today.weekday())
        if range_type == 'lastWeek':
            monday = monday - timedelta(days=7)
        sunday = monday + timedelta(days=6)
        return _make_range(_day_start(tz, monday.year, monday.month, monday.day),
                           _day_end(tz, sunday.year, sunday.month, sunday.day),
                           range_type, 'this week' if range_type == 'week' else 'last week')

    if range_type == 'month':
        return _make_range(_day_start(tz, today.year, today.month, 1),
                           _day_end(tz, today.year, today.month, today.day), 'month', 'this month')

    if range_type == 'lastMonth':
        year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
        return _make_range(_day_start(tz, year, month, 1),
                           _day_end(tz, year, month, monthrange(year, month)[1]),
                           'lastMonth', 'last month')

    if range_type == 'year':
        return _make_range(_day_start(tz, today.year, 1, 1),
                           _day_end(tz, today.year, today.month, today.day), 'year', 'this year')

    if range_type == 'lastYear':
        return _make_range(_day_start(tz, today.year - 1, 1, 1),
                           _day_end(tz, today.year - 1, 12, 31), 'lastYear', 'last year')

    if range_type == 'recent':
        start = today - timedelta(days=7)
        return _make_range(_day_start(tz, start.year, start.month, start.day),
                           _day_end(tz, today.year, today.month, today.day), 'recent', 'last 7 days')

    return None


def detect_time_range(message: str, timezone: str = 'UTC', now: Optional[datetime] = None) -> Optional[TimeRange]:
    """Detect a time frame mentioned in a query"""
    tz = _get_timezone(timezone)
    now = now.astimezone(tz) if now else datetime.now(tz)
    lower = message.lower()

    month_name = detect_month(lower)
    if month_name:
        return _month_range(tz, now, month_name, lower)

    days_match = LAST_N_DAYS.search(lower)
    if days_match:
        days = int(days_match.group(1))
        start = now.date() - timedelta(days=days)
        return _make_range(_day_start(tz, start.year, start.month, start.day),
                           _day_end(tz, now.year, now.month, now.day),
                           'lastNDays', f"last {days} days")

    checks: Tuple[Tuple[Tuple[str, ...], str], ...] = (
        (('today', 'this day'), 'today'),
        (('yesterday',), 'yesterday'),
        (('this week', 'current week'), 'week'),
        (('last week', 'previous week', 'past week'), 'lastWeek'),
        (('this month', 'current month'), 'month'),
        (('last month', 'previous month', 'past month'), 'lastMonth'),
        (('this year', 'current year'), 'year'),
        (('last year', 'previous year', 'past year'), 'lastYear'),
        (('recently', 'recent', 'lately'), 'recent'),
    )
    for phrases, range_type in checks:
        if any(phrase in lower for phrase in phrases):
            return range_for_type(range_type, timezone, now)

    return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Invalid date in time range: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed


def normalize_time_range(raw: Optional[Dict[str, Any]], timezone: str = 'UTC') -> Optional[TimeRange]:
    """Validate a client supplied time range ({startDate, endDate, type})"""
    if not raw:
        return None

    start = _parse_datetime(raw.get('startDate'))
    end = _parse_datetime(raw.get('endDate'))
    range_type = raw.get('type') or 'custom'

    if start is None and end is None:
        return range_for_type(range_type, timezone) if raw.get('type') else None

    if start and end and start > end:
        start, end = end, start

    return TimeRange(
        start_date=_to_utc(start) if start else _to_utc(pytz.utc.localize(datetime(1970, 1, 1))),
        end_date=_to_utc(end) if end else _to_utc(datetime.now(pytz.utc)),
        type=range_type,
        description=raw.get('description', '')
    )
