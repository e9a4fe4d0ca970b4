import calendar
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List, Optional, Tuple

from .config import CALENDAR_TZ
from .errors import bad_request

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso_ts(dt: datetime) -> str:
    # Fixed width so stored timestamps sort chronologically as strings
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso_date(d: date) -> str:
    return d.isoformat()


def parse_date(s: str) -> date:
    if not isinstance(s, str) or not _DATE_RE.match(s):
        raise bad_request("INVALID_DATE", f"Invalid date format: {s}. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(s)
    except ValueError as e:
        raise bad_request("INVALID_DATE", f"Invalid date format: {s}. Use YYYY-MM-DD") from e


def new_id() -> str:
    return str(uuid.uuid4())


def local_today(now: Optional[datetime] = None) -> date:
    """Calendar date of ``now`` (default: current time) in the canonical zone."""
    return (now or now_utc()).astimezone(CALENDAR_TZ).date()


def local_day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=CALENDAR_TZ)


def validate_month(year: int, month: int) -> None:
    if month < 1 or month > 12:
        raise bad_request("INVALID_MONTH", "month must be 1-12")
    if year < 1970 or year > 9999:
        raise bad_request("INVALID_MONTH", "year out of range")


def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    """First and last instant of a calendar month in the canonical zone, as UTC."""
    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=CALENDAR_TZ)
    end = datetime.combine(date(year, month, last_day), time.max, tzinfo=CALENDAR_TZ)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def month_date_range(year: int, month: int) -> Tuple[str, str]:
    last_day = calendar.monthrange(year, month)[1]
    return iso_date(date(year, month, 1)), iso_date(date(year, month, last_day))


def months_between(start_year: int, start_month: int, end_year: int, end_month: int) -> Iterator[Tuple[int, int]]:
    """Yield (year, month) from the start month up to, not including, the end month."""
    y, m = start_year, start_month
    while (y, m) < (end_year, end_month):
        yield y, m
        m += 1
        if m > 12:
            y, m = y + 1, 1


def one_year_before(dt: datetime) -> datetime:
    try:
        return dt.replace(year=dt.year - 1)
    except ValueError:
        # 29 Feb
        return dt.replace(year=dt.year - 1, day=28)


def last_n_days(today: date, n: int) -> List[date]:
    """The ``n`` days ending with ``today``, oldest first."""
    return [today - timedelta(days=i) for i in range(n - 1, -1, -1)]
