import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from log_shipper.clients.cloudwatch import CloudwatchLogsClient
from log_shipper.config.models.cloudwatch import BufferYamlConfig
from log_shipper.errors import DeliveryFailedError, FatalDeliveryError
from log_shipper.shipper.buffer import EventBuffer
from log_shipper.shipper.retry import RetryController
from log_shipper.shipper.types import LogEventBatch
from log_shipper.shipper.writer import StreamWriter

logger = structlog.get_logger(__name__)


@dataclass
class ShutdownReport:
    undelivered: Dict[str, List[LogEventBatch]] = field(default_factory=dict)
    paused: Dict[str, FatalDeliveryError] = field(default_factory=dict)
    dropped: Dict[str, int] = field(default_factory=dict)

    @property
    def undelivered_events(self) -> int:
        return sum(len(batch) for batches in self.undelivered.values() for batch in batches)

    @property
    def dropped_events(self) -> int:
        return sum(self.dropped.values())

    @property
    def clean(self) -> bool:
        return not self.undelivered and not self.paused and not self.dropped


class _StreamTarget:
    def __init__(self, buffer: EventBuffer, writer: StreamWriter):
        self.buffer = buffer
        self.writer = writer
        self.wakeup = threading.Event()
        self.flush_lock = threading.Lock()
        self.thread: Optional[threading.Thread] = None
        self.paused: Optional[FatalDeliveryError] = None
        self.dropped = 0


class LogShippingPipeline:
    """
    Ships log lines to the streams of one log group.

    Producers call `append`, which only touches the in-memory buffer. Each
    stream gets a background worker that batches buffered events and hands
    them to the stream's writer every `flush_interval_seconds`, or sooner
    when the buffer reaches a batch's size or count limit.
    """

    def __init__(
        self,
        client: CloudwatchLogsClient,
        buffer_config: BufferYamlConfig = BufferYamlConfig(),
        retry: Optional[RetryController] = None,
    ):
        self.client = client
        self.buffer_config = buffer_config
        self.retry = retry or RetryController()
        self._targets: Dict[str, _StreamTarget] = {}
        self._targets_lock = threading.Lock()
        self._stop = threading.Event()
        self._started = False

    @property
    def log_group_name(self) -> str:
        return self.client.log_group_name

    @property
    def paused_streams(self) -> Dict[str, FatalDeliveryError]:
        with self._targets_lock:
            return {
                name: target.paused
                for name, target in self._targets.items()
                if target.paused is not None
            }

    def writer(self, stream_name: str) -> StreamWriter:
        return self._target(stream_name).writer

    def _target(self, stream_name: str) -> _StreamTarget:
        with self._targets_lock:
            target = self._targets.get(stream_name)
            if target is None:
                target = _StreamTarget(
                    EventBuffer(self.buffer_config.clock_skew_tolerance_ms),
                    StreamWriter(self.client, stream_name, self.retry),
                )
                self._targets[stream_name] = target
                if self._started:
                    self._start_worker(stream_name, target)
            return target

    def append(self, stream_name: str, message: str, timestamp: Optional[int] = None) -> None:
        if self._stop.is_set():
            raise RuntimeError("The pipeline has been shut down")

        target = self._target(stream_name)
        if (
            target.buffer.size_bytes + target.writer.pending_bytes
            >= self.buffer_config.max_buffered_bytes
        ):
            target.dropped += 1
            if target.dropped == 1:
                logger.warning(
                    "Log stream is over its buffer limit, dropping new events",
                    log_stream_name=stream_name,
                    max_buffered_bytes=self.buffer_config.max_buffered_bytes,
                    paused=target.paused is not None,
                )
            return
        target.buffer.append(message, timestamp)
        if target.buffer.should_flush(
            self.buffer_config.max_batch_bytes, self.buffer_config.max_batch_count
        ):
            target.wakeup.set()

    def start(self) -> None:
        with self._targets_lock:
            if self._started:
                return
            self._started = True
            for stream_name, target in self._targets.items():
                self._start_worker(stream_name, target)

    def _start_worker(self, stream_name: str, target: _StreamTarget) -> None:
        target.thread = threading.Thread(
            target=self._run_worker,
            args=(stream_name, target),
            name=f"log-shipper-{stream_name}",
            daemon=True,
        )
        target.thread.start()

    def _run_worker(self, stream_name: str, target: _StreamTarget) -> None:
        logger.debug("Flush worker started", log_stream_name=stream_name)
        while not self._stop.is_set():
            target.wakeup.wait(self.buffer_config.flush_interval_seconds)
            target.wakeup.clear()
            if self._stop.is_set():
                break
            self._flush_target(stream_name, target)
        logger.debug("Flush worker stopped", log_stream_name=stream_name)

    def _batch_buffered(self, target: _StreamTarget) -> List[LogEventBatch]:
        batches = []
        while not target.buffer.is_empty():
            events = list(
                target.buffer.drain(
                    self.buffer_config.max_batch_bytes,
                    self.buffer_config.max_batch_count,
                )
            )
            if not events:
                break
            batches.append(LogEventBatch(events))
        return batches

    def _flush_target(self, stream_name: str, target: _StreamTarget) -> int:
        with target.flush_lock:
            if target.paused is not None or self._stop.is_set():
                return 0

            for batch in self._batch_buffered(target):
                target.writer.submit(batch)
            return self._deliver(stream_name, target)

    def _deliver(self, stream_name: str, target: _StreamTarget) -> int:
        try:
            return target.writer.deliver_pending(self._stop)
        except DeliveryFailedError as e:
            logger.warning(
                f"Batch kept for the next flush: {e.message}",
                log_stream_name=stream_name,
                pending_batches=len(target.writer.pending),
            )
        except FatalDeliveryError as e:
            target.paused = e
            logger.error(
                "Pausing log stream until an operator intervenes",
                log_stream_name=stream_name,
                log_group_name=self.log_group_name,
                cause=e.message,
            )
        return 0

    def flush(self, stream_name: Optional[str] = None) -> int:
        """Synchronously flush one stream, or every stream when no name is given."""
        with self._targets_lock:
            targets = {
                name: target
                for name, target in self._targets.items()
                if stream_name is None or name == stream_name
            }
        return sum(self._flush_target(name, target) for name, target in targets.items())

    def resume(self, stream_name: str) -> None:
        target = self._target(stream_name)
        if target.paused is not None:
            logger.info("Resuming paused log stream", log_stream_name=stream_name)
            target.paused = None
            target.wakeup.set()

    def shutdown(self, timeout: Optional[float] = None) -> ShutdownReport:
        """
        Stop every worker and report what was not delivered.

        An append already in flight completes but is not retried; nothing
        else is sent. Events still buffered are returned as batches alongside
        the queued ones, and a worker that outlives `timeout` does not hold
        up the report.
        """
        self._stop.set()
        with self._targets_lock:
            targets = dict(self._targets)

        for target in targets.values():
            target.wakeup.set()
        running = set()
        for stream_name, target in targets.items():
            if target.thread is not None:
                target.thread.join(timeout)
                if target.thread.is_alive():
                    running.add(stream_name)
                    logger.warning(
                        "Flush worker still running at shutdown",
                        log_stream_name=stream_name,
                    )

        report = ShutdownReport()
        for stream_name, target in targets.items():
            undelivered = target.writer.take_pending(
                wait=stream_name not in running
            ) + self._batch_buffered(target)
            if undelivered:
                report.undelivered[stream_name] = undelivered
            if target.paused is not None:
                report.paused[stream_name] = target.paused
            if target.dropped:
                report.dropped[stream_name] = target.dropped

        if not report.clean:
            logger.warning(
                f"Shut down with {report.undelivered_events} undelivered events",
                log_group_name=self.log_group_name,
                streams=sorted(report.undelivered),
                paused_streams=sorted(report.paused),
                dropped_events=report.dropped_events,
            )
        return report
