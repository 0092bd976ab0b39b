from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Sequence

from log_shipper.config.models.cloudwatch import (
    EVENT_OVERHEAD_BYTES,
    MAX_BATCH_BYTES,
    MAX_BATCH_COUNT,
    MAX_BATCH_SPAN_MS,
    MAX_EVENT_BYTES,
)
from log_shipper.errors import InvalidBatchError
from log_shipper.utils.time_conversion import format_milliseconds

MAX_EVENT_AGE_MS = int(timedelta(days=14).total_seconds() * 1000)
MAX_EVENT_FUTURE_MS = int(timedelta(hours=2).total_seconds() * 1000)

TRUNCATED_SUFFIX = "...[truncated]"


def event_size(message: str) -> int:
    return len(message.encode("utf-8")) + EVENT_OVERHEAD_BYTES


def truncate_message(message: str) -> str:
    """Cut a message down to the largest size CloudWatch accepts for one event."""
    limit = MAX_EVENT_BYTES - EVENT_OVERHEAD_BYTES
    encoded = message.encode("utf-8")
    if len(encoded) <= limit:
        return message
    keep = limit - len(TRUNCATED_SUFFIX.encode("utf-8"))
    return encoded[:keep].decode("utf-8", errors="ignore") + TRUNCATED_SUFFIX


@dataclass(frozen=True)
class LogEvent:
    timestamp: int
    message: str

    @property
    def size(self) -> int:
        return event_size(self.message)

    def to_cloudwatch(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "message": self.message}


@dataclass(frozen=True)
class LogEventBatch:
    events: Sequence[LogEvent]
    size_bytes: int = field(init=False)

    def __post_init__(self):
        if not self.events:
            raise InvalidBatchError("A batch must contain at least one event")
        if len(self.events) > MAX_BATCH_COUNT:
            raise InvalidBatchError(
                f"A batch cannot hold more than {MAX_BATCH_COUNT} events, got {len(self.events)}"
            )

        for previous, current in zip(self.events, self.events[1:]):
            if current.timestamp < previous.timestamp:
                raise InvalidBatchError(
                    f"Batch timestamps must be non-decreasing: {current.timestamp} follows {previous.timestamp}"
                )

        if self.last_timestamp - self.first_timestamp > MAX_BATCH_SPAN_MS:
            raise InvalidBatchError("A batch cannot span more than 24 hours")

        size_bytes = sum(event.size for event in self.events)
        if size_bytes > MAX_BATCH_BYTES:
            raise InvalidBatchError(
                f"A batch cannot exceed {MAX_BATCH_BYTES} bytes, got {size_bytes}"
            )
        object.__setattr__(self, "events", tuple(self.events))
        object.__setattr__(self, "size_bytes", size_bytes)

    def __len__(self) -> int:
        return len(self.events)

    @property
    def first_timestamp(self) -> int:
        return self.events[0].timestamp

    @property
    def last_timestamp(self) -> int:
        return self.events[-1].timestamp

    def check_time_window(self, now_ms: int) -> None:
        """Raise InvalidBatchError if CloudWatch would reject the batch's timestamps at `now_ms`."""
        if self.first_timestamp < now_ms - MAX_EVENT_AGE_MS:
            raise InvalidBatchError(
                f"Batch starts at {format_milliseconds(self.first_timestamp)}, more than 14 days ago"
            )
        if self.last_timestamp > now_ms + MAX_EVENT_FUTURE_MS:
            raise InvalidBatchError(
                f"Batch ends at {format_milliseconds(self.last_timestamp)}, more than 2 hours in the future"
            )

    def to_cloudwatch(self) -> List[Dict[str, Any]]:
        return [event.to_cloudwatch() for event in self.events]
