import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

import structlog

from log_shipper.clients.cloudwatch import CloudwatchLogsClient
from log_shipper.errors import (
    DataAlreadyAcceptedError,
    ResourceMissingError,
    SequenceConflictError,
)
from log_shipper.shipper.retry import RetryController
from log_shipper.shipper.types import LogEventBatch
from log_shipper.utils.time_conversion import format_milliseconds, now_milliseconds

logger = structlog.get_logger(__name__)


@dataclass
class LogStreamHandle:
    name: str
    sequence_token: Optional[str] = None

    def invalidate(self) -> None:
        self.sequence_token = None


class StreamWriter:
    """
    Appends batches to a single log stream.

    Owns the stream's sequence token and its queue of pending batches. Only
    one append is in flight per stream; batches leave the queue only after
    CloudWatch confirmed them.
    """

    def __init__(
        self,
        client: CloudwatchLogsClient,
        log_stream_name: str,
        retry: RetryController,
    ):
        self.client = client
        self.stream_name = log_stream_name
        self.retry = retry
        self._handle: Optional[LogStreamHandle] = None
        self._pending: Deque[LogEventBatch] = deque()
        self._lock = threading.RLock()
        self._queue_lock = threading.Lock()

    @property
    def handle(self) -> LogStreamHandle:
        if self._handle is None:
            self._handle = LogStreamHandle(name=self.stream_name)
        return self._handle

    @property
    def sequence_token(self) -> Optional[str]:
        return self._handle.sequence_token if self._handle else None

    @property
    def pending(self) -> List[LogEventBatch]:
        with self._queue_lock:
            return list(self._pending)

    def submit(self, batch: LogEventBatch) -> None:
        with self._queue_lock:
            self._pending.append(batch)

    @property
    def pending_bytes(self) -> int:
        with self._queue_lock:
            return sum(batch.size_bytes for batch in self._pending)

    def take_pending(self, wait: bool = True) -> List[LogEventBatch]:
        """
        Remove and return every queued batch.

        With `wait` unset the queue is taken even while an append is still in
        flight; a batch that append later confirms may then be reported twice.
        """
        acquired = self._lock.acquire(blocking=wait)
        try:
            if not acquired:
                logger.warning(
                    "Taking queued batches while an append is still in flight",
                    log_stream_name=self.stream_name,
                )
            with self._queue_lock:
                batches = list(self._pending)
                self._pending.clear()
                return batches
        finally:
            if acquired:
                self._lock.release()

    def deliver_pending(self, stop: Optional[threading.Event] = None) -> int:
        """
        Flush queued batches oldest first. A batch that fails stays at the
        head of the queue and the error propagates. Setting `stop` lets the
        attempt in flight finish, cancels its retries and leaves the rest
        queued.
        """
        delivered = 0
        with self._lock:
            while True:
                with self._queue_lock:
                    if not self._pending or (stop is not None and stop.is_set()):
                        return delivered
                    batch = self._pending[0]

                delivered += self.flush(batch, stop)

                with self._queue_lock:
                    if self._pending and self._pending[0] is batch:
                        self._pending.popleft()

    def flush(self, batch: LogEventBatch, stop: Optional[threading.Event] = None) -> int:
        with self._lock:
            count = self.retry.call(lambda: self._append(batch), batch, stop)
        logger.info(
            f"Delivered {count} events to CloudWatch Logs",
            log_stream_name=self.stream_name,
            batch_bytes=batch.size_bytes,
            first_event=format_milliseconds(batch.first_timestamp),
            last_event=format_milliseconds(batch.last_timestamp),
        )
        return count

    def _append(self, batch: LogEventBatch) -> int:
        handle = self.handle
        batch.check_time_window(now_milliseconds())

        try:
            return self._put(handle, batch)
        except SequenceConflictError:
            logger.info(
                "Sequence token rejected, refreshing it from the stream",
                log_stream_name=handle.name,
            )
            handle.invalidate()
            handle.sequence_token = self.client.describe_sequence_token(handle.name)
            return self._put(handle, batch)
        except ResourceMissingError:
            logger.info(
                "Log stream does not exist, creating it", log_stream_name=handle.name
            )
            self.client.create_log_stream(handle.name)
            handle.invalidate()
            return self._put(handle, batch)

    def _put(self, handle: LogStreamHandle, batch: LogEventBatch) -> int:
        try:
            response = self.client.put_log_events(
                handle.name, batch.to_cloudwatch(), handle.sequence_token
            )
        except DataAlreadyAcceptedError as e:
            logger.info(
                "Batch was already accepted by CloudWatch Logs",
                log_stream_name=handle.name,
            )
            handle.sequence_token = e.expected_sequence_token
            return len(batch)

        handle.sequence_token = response.get("nextSequenceToken")
        return len(batch)
