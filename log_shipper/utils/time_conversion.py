from datetime import datetime, timezone

from pydantic import PositiveInt


def to_milliseconds(dt: datetime) -> PositiveInt:
    # CloudWatch Logs timestamps are milliseconds since the epoch
    return int(dt.timestamp() * 1000)


def from_milliseconds(ms: PositiveInt) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)


def now_milliseconds() -> PositiveInt:
    return to_milliseconds(datetime.now(timezone.utc))


def format_milliseconds(ms: PositiveInt) -> str:
    return from_milliseconds(ms).strftime("%Y-%m-%d %H:%M:%S")
