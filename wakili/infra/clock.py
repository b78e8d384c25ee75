from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def normalize_datetime(dt: datetime) -> datetime:
    """Treat naive values as UTC (SQLite drops tzinfo) and convert to UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class FrozenClock:
    def __init__(self, current: datetime) -> None:
        self.current = normalize_datetime(current)

    def __call__(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = normalize_datetime(current)
