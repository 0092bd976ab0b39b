from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from log_shipper.shipper.types import LogEventBatch


class ShipperError(Exception):
    """Base class for every error raised by the log shipper."""

    def __init__(self, message):
        self.message = message
        super().__init__(self.message)


class ConfigError(ShipperError):
    """Bad or blank settings, rejected when they are set."""


class OperatorNotAuthorizedError(ShipperError):
    """The operator is not allowed to run an administrative action."""


class AuthError(ShipperError):
    """Credentials were rejected or the principal lacks a permission."""


class ConnectivityError(ShipperError):
    """Network failure, timeout or a transient service-side failure."""


class ThrottledError(ShipperError):
    """The service rate limited the request."""


class SequenceConflictError(ShipperError):
    """The sequence token sent with an append was not the expected one."""

    def __init__(self, message, expected_sequence_token: Optional[str] = None):
        super().__init__(message)
        self.expected_sequence_token = expected_sequence_token


class DataAlreadyAcceptedError(SequenceConflictError):
    """The batch was already stored by a previous append."""


class ResourceMissingError(ShipperError):
    """The log stream (or its log group) does not exist."""


class RequestRejectedError(ShipperError):
    """The service rejected the request as malformed or unsupported."""


class InvalidBatchError(ShipperError):
    """A batch violates the service's ordering, size or time window limits."""


class OutOfOrderError(ShipperError):
    """An event is older than the last buffered event by more than the skew tolerance."""


class DeliveryFailedError(ShipperError):
    """Retries were exhausted; the batch is kept for the caller to requeue or alert on."""

    def __init__(self, message, batch: "LogEventBatch", attempts: int):
        super().__init__(message)
        self.batch = batch
        self.attempts = attempts


class FatalDeliveryError(ShipperError):
    """A non-retryable failure; the stream must be paused until an operator intervenes."""

    def __init__(self, message, batch: Optional["LogEventBatch"] = None):
        super().__init__(message)
        self.batch = batch
