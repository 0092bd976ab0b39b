import threading
from enum import Enum
from typing import Callable, Optional, Type, TypeVar

import stamina
import structlog

from log_shipper.config.models.cloudwatch import RetryYamlConfig
from log_shipper.errors import (
    ConnectivityError,
    DeliveryFailedError,
    FatalDeliveryError,
    ShipperError,
    ThrottledError,
)
from log_shipper.shipper.types import LogEventBatch

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class FailureKind(str, Enum):
    THROTTLED = "throttled"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def classify(exc: BaseException) -> FailureKind:
    if isinstance(exc, ThrottledError):
        return FailureKind.THROTTLED
    if isinstance(exc, ConnectivityError):
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


def describe(exc: BaseException) -> str:
    if isinstance(exc, ShipperError):
        return exc.message
    return str(exc) or type(exc).__name__


class RetryController:
    """
    Decides between retrying, giving up on a batch, and stopping the stream.

    Throttled and transient failures are retried with capped exponential
    backoff (transient with the shorter cap). Running out of attempts raises
    DeliveryFailedError carrying the batch; any other failure raises
    FatalDeliveryError right away.
    """

    def __init__(self, config: RetryYamlConfig = RetryYamlConfig()):
        self.config = config

    def _retry_context(self, on: Type[Exception], wait_max: float):
        return stamina.retry_context(
            on=on,
            attempts=self.config.max_attempts,
            timeout=None,
            wait_initial=self.config.wait_initial,
            wait_max=wait_max,
            wait_jitter=self.config.wait_jitter,
        )

    def _with_backoff(self, operation: Callable[[], T]) -> T:
        for throttled_attempt in self._retry_context(
            ThrottledError, self.config.throttled_wait_max
        ):
            with throttled_attempt:
                for transient_attempt in self._retry_context(
                    ConnectivityError, self.config.transient_wait_max
                ):
                    with transient_attempt:
                        return operation()
        raise AssertionError("stamina exhausted its attempts without raising")

    def call(
        self,
        operation: Callable[[], T],
        batch: LogEventBatch,
        stop: Optional[threading.Event] = None,
    ) -> T:
        """
        Run `operation` for `batch` under the backoff policy. Once `stop` is
        set no further attempt is made and the batch is handed back through
        DeliveryFailedError.
        """
        attempts = 0

        def attempt() -> T:
            nonlocal attempts
            if attempts and stop is not None and stop.is_set():
                raise DeliveryFailedError(
                    f"Delivery stopped after {attempts} attempts: shutting down",
                    batch,
                    attempts,
                )
            attempts += 1
            return operation()

        try:
            return self._with_backoff(attempt)
        except (DeliveryFailedError, FatalDeliveryError):
            raise
        except Exception as e:
            kind = classify(e)
            if kind == FailureKind.PERMANENT:
                logger.error(
                    f"Permanent failure delivering batch: {describe(e)}",
                    failure_kind=kind.value,
                    batch_events=len(batch),
                    exc_info=True,
                )
                raise FatalDeliveryError(describe(e), batch) from e

            logger.warning(
                f"Giving up on batch after {attempts} attempts: {describe(e)}",
                failure_kind=kind.value,
                batch_events=len(batch),
            )
            raise DeliveryFailedError(
                f"Delivery failed after {attempts} attempts: {describe(e)}",
                batch,
                attempts,
            ) from e
