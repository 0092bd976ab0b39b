import threading
from collections import deque
from typing import Deque, Iterator, Optional

import structlog

from log_shipper.config.models.cloudwatch import MAX_BATCH_SPAN_MS
from log_shipper.errors import OutOfOrderError
from log_shipper.shipper.types import LogEvent, truncate_message
from log_shipper.utils.time_conversion import now_milliseconds

logger = structlog.get_logger(__name__)


class EventBuffer:
    """
    Ordered, thread safe buffer of log events waiting to be batched.

    The producer thread appends while the stream's flush worker drains.
    """

    def __init__(self, clock_skew_tolerance_ms: int = 1_000):
        self.clock_skew_tolerance_ms = clock_skew_tolerance_ms
        self._events: Deque[LogEvent] = deque()
        self._size_bytes = 0
        self._last_timestamp: Optional[int] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._size_bytes

    @property
    def last_timestamp(self) -> Optional[int]:
        return self._last_timestamp

    def is_empty(self) -> bool:
        return len(self) == 0

    def should_flush(self, max_bytes: int, max_count: int) -> bool:
        with self._lock:
            return len(self._events) >= max_count or self._size_bytes >= max_bytes

    def append(self, message: str, timestamp: Optional[int] = None) -> LogEvent:
        if timestamp is None:
            timestamp = now_milliseconds()

        truncated = truncate_message(message)
        if truncated is not message:
            logger.warning(
                "Log line exceeds the CloudWatch event size limit, truncating",
                original_bytes=len(message.encode("utf-8")),
            )

        with self._lock:
            last = self._last_timestamp
            if last is not None and timestamp < last:
                if last - timestamp > self.clock_skew_tolerance_ms:
                    raise OutOfOrderError(
                        f"Event timestamp {timestamp} is {last - timestamp}ms before the last buffered event"
                    )
                # Within tolerance: keep buffered order non-decreasing
                timestamp = last

            event = LogEvent(timestamp=timestamp, message=truncated)
            self._events.append(event)
            self._size_bytes += event.size
            self._last_timestamp = timestamp
            return event

    def _pop_if_fits(
        self,
        used_bytes: int,
        used_count: int,
        max_bytes: int,
        max_count: int,
        first_timestamp: Optional[int],
        max_span_ms: int,
    ) -> Optional[LogEvent]:
        with self._lock:
            if not self._events or used_count >= max_count:
                return None
            head = self._events[0]
            # The first event is always taken, even when larger than max_bytes
            if used_count and used_bytes + head.size > max_bytes:
                return None
            if (
                first_timestamp is not None
                and head.timestamp - first_timestamp > max_span_ms
            ):
                return None
            self._events.popleft()
            self._size_bytes -= head.size
            return head

    def drain(
        self, max_bytes: int, max_count: int, max_span_ms: int = MAX_BATCH_SPAN_MS
    ) -> Iterator[LogEvent]:
        """
        Yield the oldest contiguous run of events within the byte, count and
        time span ceilings. Events are removed from the buffer as they are
        consumed; an unconsumed remainder stays buffered.
        """
        used_bytes = 0
        used_count = 0
        first_timestamp: Optional[int] = None
        while True:
            event = self._pop_if_fits(
                used_bytes,
                used_count,
                max_bytes,
                max_count,
                first_timestamp,
                max_span_ms,
            )
            if event is None:
                return
            if first_timestamp is None:
                first_timestamp = event.timestamp
            used_bytes += event.size
            used_count += 1
            yield event
