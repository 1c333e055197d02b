from datetime import date, datetime, time, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def add_minutes(value: time, minutes: int) -> time:
    """time + minutes; raises ValueError if the result passes midnight."""
    total = to_minutes(value) + minutes
    if total >= 24 * 60:
        raise ValueError("interval runs past midnight")
    return from_minutes(total)


def combine(day: date, value: time) -> datetime:
    return datetime.combine(day, value)


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval intersection on minute offsets."""
    return start_a < end_b and start_b < end_a
