import re
from datetime import date, datetime, time, timedelta

SLOT_FORMAT = "%H:%M"            # '09:30' (zero-padded, sorts chronologically)
DISPLAY_FORMAT = "%I:%M %p"      # '9:30 AM'
INPUT_FORMATS = ("%H:%M", "%I:%M %p", "%I:%M%p")  # what we accept in parse_hhmm
DATE_FORMAT = "%Y-%m-%d"

_HHMM_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def is_valid_hhmm(value: str) -> bool:
    return bool(value) and bool(_HHMM_RE.match(value.strip()))


def parse_hhmm(value) -> time:
    """
    Convert '09:30', '9:30' or '9:30 AM' (or a time object) into a time.
    Raises ValueError for anything else.
    """
    if isinstance(value, time):
        return value
    if not value:
        raise ValueError("empty time value")

    value = value.strip().upper()
    for fmt in INPUT_FORMATS:
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"invalid time value: {value!r}")


def format_hhmm(value) -> str:
    """Canonical zero-padded 'HH:MM' used for slot keys and queue ordering."""
    return parse_hhmm(value).strftime(SLOT_FORMAT)


def format_display(value) -> str:
    """'14:00' -> '2:00 PM'."""
    return parse_hhmm(value).strftime(DISPLAY_FORMAT).lstrip("0")


def to_minutes(value) -> int:
    t = parse_hhmm(value)
    return t.hour * 60 + t.minute


def minutes_to_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def ranges_overlap(start1, end1, start2, end2) -> bool:
    """Half-open [start, end) overlap on 'HH:MM' values."""
    return to_minutes(start1) < to_minutes(end2) and to_minutes(start2) < to_minutes(end1)


def iter_slots(start, end, duration: int):
    """
    Yield ('HH:MM', 'HH:MM') pairs of `duration` minutes covering [start, end).
    A trailing piece shorter than `duration` is dropped.
    """
    cursor = to_minutes(start)
    stop = to_minutes(end)
    while cursor + duration <= stop:
        yield minutes_to_hhmm(cursor), minutes_to_hhmm(cursor + duration)
        cursor += duration


def parse_date(value):
    """
    Parse a date string in 'YYYY-MM-DD' format into a date object.
    Date objects pass through; datetimes are truncated. Returns None if parsing fails.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except (TypeError, ValueError, AttributeError):
        return None


def date_string(value) -> str:
    """Canonical 'YYYY-MM-DD' for a date, immune to timezone re-rendering."""
    return parse_date(value).strftime(DATE_FORMAT)


def combine(day, hhmm, tzinfo=None) -> datetime:
    """Aware datetime for `hhmm` on `day` in `tzinfo`."""
    naive = datetime.combine(parse_date(day), parse_hhmm(hhmm))
    if tzinfo is None:
        return naive
    return naive.replace(tzinfo=tzinfo)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, floored (negative when end is earlier)."""
    return int((end - start) // timedelta(minutes=1))
