"""
Parser for seconds-resolution schedule expressions.

Supported forms:

- Six cron fields: ``second minute hour day-of-month month day-of-week``.
  Day-of-week follows cron numbering (0 or 7 is Sunday) and accepts
  ``sun``..``sat``; ``?`` is a synonym of ``*``.
  When both day-of-month and day-of-week are restricted, a day matching
  either one fires, as in cron.
- Descriptors: ``@yearly``/``@annually``, ``@monthly``, ``@weekly``,
  ``@daily``/``@midnight``, ``@hourly``.
- Fixed intervals: ``@every 1h30m``, ``@every 45s``.
"""

import re
from typing import Dict, Optional, Union

from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

Trigger = Union[CronTrigger, IntervalTrigger, OrTrigger]

CRON_FIELDS = ('second', 'minute', 'hour', 'day', 'month', 'day_of_week')

DESCRIPTORS: Dict[str, Dict[str, str]] = {
    '@yearly': {'second': '0', 'minute': '0', 'hour': '0', 'day': '1', 'month': '1'},
    '@annually': {'second': '0', 'minute': '0', 'hour': '0', 'day': '1', 'month': '1'},
    '@monthly': {'second': '0', 'minute': '0', 'hour': '0', 'day': '1'},
    '@weekly': {'second': '0', 'minute': '0', 'hour': '0', 'day_of_week': 'sun'},
    '@daily': {'second': '0', 'minute': '0', 'hour': '0'},
    '@midnight': {'second': '0', 'minute': '0', 'hour': '0'},
    '@hourly': {'second': '0', 'minute': '0'},
}

# APScheduler names, indexed by cron weekday number (0 = Sunday)
WEEKDAY_NAMES = ['sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat']

DURATION_PART = re.compile(r'(\d+)(h|m|s)')
DURATION_UNITS = {'h': 3600, 'm': 60, 's': 1}


class InvalidScheduleError(Exception):
    """Raised when a schedule expression cannot be parsed."""
    pass


def parse_duration(text: str) -> int:
    """Parse a compact duration such as ``1h30m`` into seconds."""
    text = text.strip().lower()
    if not text or DURATION_PART.sub('', text):
        raise InvalidScheduleError(f'Invalid duration: {text!r}')
    seconds = sum(int(amount) * DURATION_UNITS[unit] for amount, unit in DURATION_PART.findall(text))
    if seconds <= 0:
        raise InvalidScheduleError(f'Duration must be positive: {text!r}')
    return seconds


def _weekday_number(token: str) -> int:
    token = token.strip().lower()
    if token in WEEKDAY_NAMES:
        return WEEKDAY_NAMES.index(token)
    if not token.isdigit() or int(token) > 7:
        raise InvalidScheduleError(f'Invalid day of week: {token!r}')
    return int(token) % 7


def convert_day_of_week(field: str) -> str:
    """Translate a cron day-of-week field into an explicit APScheduler weekday list.

    APScheduler numbers weekdays from Monday, so numeric cron values cannot be
    passed through unchanged. Expanding to names also avoids ranges that wrap
    past Saturday.
    """
    if field in ('*', '?'):
        return '*'

    days = set()
    for part in field.split(','):
        step = 1
        if '/' in part:
            part, step_text = part.split('/', 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidScheduleError(f'Invalid day of week step: {step_text!r}')
            step = int(step_text)

        if part in ('*', '?'):
            start, end = 0, 6
        elif '-' in part:
            low, high = part.split('-', 1)
            start, end = _weekday_number(low), _weekday_number(high)
            if high.strip() == '7' and low.strip() != '7':
                end = 7
            if end < start:
                raise InvalidScheduleError(f'Invalid day of week range: {part!r}')
        else:
            start = end = _weekday_number(part)
            if step > 1:
                end = 6

        days.update(day % 7 for day in range(start, end + 1, step))

    return ','.join(WEEKDAY_NAMES[day] for day in sorted(days))


def _cron_fields(expr: str) -> Dict[str, str]:
    parts = expr.split()
    if len(parts) != len(CRON_FIELDS):
        raise InvalidScheduleError(f'Expected {len(CRON_FIELDS)} fields (with seconds), got {len(parts)}: {expr!r}')

    fields = dict(zip(CRON_FIELDS, parts))
    if fields['day'] == '?':
        fields['day'] = '*'
    fields['day_of_week'] = convert_day_of_week(fields['day_of_week'])
    return fields


def parse_schedule(expr: str, timezone: Optional[str] = None) -> Trigger:
    """Build an APScheduler trigger from a schedule expression.

    Args:
        expr: Schedule expression
        timezone: IANA timezone name, scheduler default if None or empty

    Returns:
        CronTrigger, IntervalTrigger, or an OrTrigger for restricted day-of-month plus day-of-week

    Raises:
        InvalidScheduleError: If the expression cannot be parsed
    """
    if not expr or not expr.strip():
        raise InvalidScheduleError('Empty schedule expression')

    expr = expr.strip()
    tz = timezone or None
    lowered = expr.lower()

    try:
        if lowered.startswith('@every'):
            return IntervalTrigger(seconds=parse_duration(expr[len('@every'):]), timezone=tz)

        if lowered.startswith('@'):
            if lowered not in DESCRIPTORS:
                raise InvalidScheduleError(f'Unknown descriptor: {expr!r}')
            return CronTrigger(timezone=tz, **DESCRIPTORS[lowered])

        fields = _cron_fields(expr)
        if fields['day'] != '*' and fields['day_of_week'] != '*':
            return OrTrigger([
                CronTrigger(timezone=tz, **dict(fields, day_of_week='*')),
                CronTrigger(timezone=tz, **dict(fields, day='*')),
            ])
        return CronTrigger(timezone=tz, **fields)
    except InvalidScheduleError:
        raise
    except (ValueError, TypeError, LookupError) as e:
        raise InvalidScheduleError(f'Invalid schedule expression {expr!r}: {e}')
