"""
Summary period arithmetic.

A period descriptor is a plain dict ``{type, year, month, week, day}`` where
only the parts relevant to the type are set. Weekly periods use ISO weeks,
so their ``year`` is the ISO year.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from emission_engine.api.errors import InvalidInput
from emission_engine.models.emission_data import PeriodType

PERIOD_TYPES = [p.value for p in PeriodType]
DEFAULT_ALL_TIME_START = '2000-01-01'


def _utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _require(period_type: str, **parts) -> None:
    missing = [name for name, value in parts.items() if value is None]
    if missing:
        raise InvalidInput(f"Period type '{period_type}' requires {', '.join(missing)}")


def validate_period_type(period_type: str) -> str:
    if period_type not in PERIOD_TYPES:
        raise InvalidInput(f"Invalid period type: {period_type}. Expected one of {', '.join(PERIOD_TYPES)}")
    return period_type


def make_period(
    period_type: str,
    year: Optional[int] = None,
    month: Optional[int] = None,
    week: Optional[int] = None,
    day: Optional[int] = None,
) -> Dict[str, Any]:
    """Period descriptor carrying only the parts its type uses"""
    validate_period_type(period_type)
    period = {'type': period_type, 'year': None, 'month': None, 'week': None, 'day': None}
    if period_type == PeriodType.DAILY.value:
        period.update(year=year, month=month, day=day)
    elif period_type == PeriodType.WEEKLY.value:
        period.update(year=year, week=week)
    elif period_type == PeriodType.MONTHLY.value:
        period.update(year=year, month=month)
    elif period_type == PeriodType.YEARLY.value:
        period.update(year=year)
    return period


def period_for_timestamp(period_type: str, ts: datetime) -> Dict[str, Any]:
    """The period of the given type that contains ``ts`` (evaluated in UTC)"""
    ts = ts.astimezone(timezone.utc) if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    if period_type == PeriodType.WEEKLY.value:
        iso_year, iso_week, _ = ts.isocalendar()
        return make_period(period_type, year=iso_year, week=iso_week)
    return make_period(period_type, year=ts.year, month=ts.month, day=ts.day)


def fill_period_parts(
    period_type: str,
    now: datetime,
    year: Optional[int] = None,
    month: Optional[int] = None,
    week: Optional[int] = None,
    day: Optional[int] = None,
) -> Tuple[int, int, int, int]:
    """Missing (year, month, week, day) parts taken from ``now``; weekly periods use the ISO year"""
    iso_year, iso_week, _ = now.isocalendar()
    default_year = iso_year if period_type == PeriodType.WEEKLY.value else now.year
    return year or default_year, month or now.month, week or iso_week, day or now.day


def _parse_start(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = isoparse(str(value or DEFAULT_ALL_TIME_START))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def get_date_range(
    period: Dict[str, Any],
    all_time_start: Any = DEFAULT_ALL_TIME_START,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Resolve a period to its [from, to) instants in UTC

    Raises:
        InvalidInput: unknown period type or missing date parts
    """
    period_type = validate_period_type(period.get('type'))
    year, month, week, day = (period.get(k) for k in ('year', 'month', 'week', 'day'))

    try:
        if period_type == PeriodType.DAILY.value:
            _require(period_type, year=year, month=month, day=day)
            start = _utc(date(year, month, day))
            return start, start + timedelta(days=1)

        if period_type == PeriodType.WEEKLY.value:
            _require(period_type, year=year, week=week)
            start = _utc(date.fromisocalendar(year, week, 1))
            return start, start + timedelta(weeks=1)

        if period_type == PeriodType.MONTHLY.value:
            _require(period_type, year=year, month=month)
            start = _utc(date(year, month, 1))
            return start, start + relativedelta(months=1)

        if period_type == PeriodType.YEARLY.value:
            _require(period_type, year=year)
            start = _utc(date(year, 1, 1))
            return start, start + relativedelta(years=1)
    except ValueError as e:
        raise InvalidInput(f"Invalid {period_type} period: {e}") from e

    # all-time
    return _parse_start(all_time_start), now or datetime.now(timezone.utc)


def get_previous_period(period: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The period one unit before; None for all-time"""
    period_type = validate_period_type(period.get('type'))
    if period_type == PeriodType.ALL_TIME.value:
        return None

    start, _ = get_date_range(period)
    if period_type == PeriodType.DAILY.value:
        return period_for_timestamp(period_type, start - timedelta(days=1))
    if period_type == PeriodType.WEEKLY.value:
        return period_for_timestamp(period_type, start - timedelta(weeks=1))
    if period_type == PeriodType.MONTHLY.value:
        return period_for_timestamp(period_type, start - relativedelta(months=1))
    return make_period(period_type, year=period['year'] - 1)


def describe_period(period: Dict[str, Any], start: datetime, end: datetime) -> Dict[str, Any]:
    """Period block stored on a summary"""
    described = dict(period)
    described['date'] = start if period.get('type') == PeriodType.DAILY.value else None
    described['from'] = start
    described['to'] = end
    return described
