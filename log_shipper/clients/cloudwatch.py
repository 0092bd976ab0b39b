from typing import Any, Dict, List, Optional

import structlog
from botocore.client import BaseClient  # type: ignore
from botocore.exceptions import (  # type: ignore
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    ParamValidationError,
    PartialCredentialsError,
)

from log_shipper.errors import (
    AuthError,
    ConnectivityError,
    DataAlreadyAcceptedError,
    RequestRejectedError,
    ResourceMissingError,
    SequenceConflictError,
    ShipperError,
    ThrottledError,
)

logger = structlog.get_logger(__name__)

# Only need to know that the read succeeds, not the events themselves
VALIDATION_FILTER_LIMIT = 1

THROTTLING_CODES = {
    "ThrottlingException",
    "Throttling",
    "TooManyRequestsException",
    "RequestLimitExceeded",
}
TRANSIENT_CODES = {
    "ServiceUnavailableException",
    "ServiceUnavailable",
    "InternalFailure",
    "InternalServerError",
    "RequestTimeout",
    "RequestTimeoutException",
}
AUTH_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidSignatureException",
    "SignatureDoesNotMatch",
    "MissingAuthenticationToken",
}


def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "Unknown")


def error_message(e: Exception) -> str:
    """Human readable cause of a failed AWS call."""
    if isinstance(e, ClientError):
        message = e.response.get("Error", {}).get("Message")
        if message:
            return f"{message} (Service: {e.operation_name}; Error Code: {error_code(e)})"
    if isinstance(e, ShipperError):
        return e.message
    return str(e) or type(e).__name__


def translate_error(e: Exception) -> ShipperError:
    """Map a botocore failure onto the shipper's error taxonomy."""
    if isinstance(e, ShipperError):
        return e

    message = error_message(e)

    if isinstance(e, ClientError):
        code = error_code(e)
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

        if code in THROTTLING_CODES:
            return ThrottledError(message)
        if code == "DataAlreadyAcceptedException":
            return DataAlreadyAcceptedError(
                message, e.response.get("expectedSequenceToken")
            )
        if code == "InvalidSequenceTokenException":
            return SequenceConflictError(
                message, e.response.get("expectedSequenceToken")
            )
        if code == "ResourceNotFoundException":
            return ResourceMissingError(message)
        if code in AUTH_CODES:
            return AuthError(message)
        if code in TRANSIENT_CODES or status >= 500:
            return ConnectivityError(message)
        return RequestRejectedError(message)

    if isinstance(e, (NoCredentialsError, PartialCredentialsError)):
        return AuthError(message)
    if isinstance(e, ParamValidationError):
        return RequestRejectedError(message)
    if isinstance(e, (BotoConnectionError, HTTPClientError, BotoCoreError)):
        return ConnectivityError(message)
    return ShipperError(message)


class CloudwatchLogsClient:
    """The CloudWatch Logs calls the shipper needs, with errors already translated."""

    def __init__(self, logs_client: BaseClient, log_group_name: str):
        self.logs_client = logs_client
        self.log_group_name = log_group_name

    def _call(self, operation: str, **params: Any) -> Dict[str, Any]:
        try:
            return getattr(self.logs_client, operation)(**params)
        except (ClientError, BotoCoreError) as e:
            translated = translate_error(e)
            logger.debug(
                f"CloudWatch Logs {operation} failed: {type(translated).__name__}",
                log_group_name=self.log_group_name,
                cause=translated.message,
            )
            raise translated from e

    def create_log_stream(self, log_stream_name: str) -> None:
        try:
            self._call(
                "create_log_stream",
                logGroupName=self.log_group_name,
                logStreamName=log_stream_name,
            )
        except RequestRejectedError as e:
            cause = e.__cause__
            if (
                isinstance(cause, ClientError)
                and error_code(cause) == "ResourceAlreadyExistsException"
            ):
                logger.debug(
                    "Log stream already exists",
                    log_group_name=self.log_group_name,
                    log_stream_name=log_stream_name,
                )
                return
            raise
        logger.info(
            "Created log stream",
            log_group_name=self.log_group_name,
            log_stream_name=log_stream_name,
        )

    def describe_sequence_token(self, log_stream_name: str) -> Optional[str]:
        """
        Fetch the upload sequence token of a stream.

        Raises ResourceMissingError when the stream does not exist.
        """
        response = self._call(
            "describe_log_streams",
            logGroupName=self.log_group_name,
            logStreamNamePrefix=log_stream_name,
            limit=1,
        )
        for stream in response.get("logStreams", []):
            if stream.get("logStreamName") == log_stream_name:
                return stream.get("uploadSequenceToken")
        raise ResourceMissingError(
            f"Log stream {log_stream_name} not found in log group {self.log_group_name}"
        )

    def put_log_events(
        self,
        log_stream_name: str,
        events: List[Dict[str, Any]],
        sequence_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "logGroupName": self.log_group_name,
            "logStreamName": log_stream_name,
            "logEvents": events,
        }
        if sequence_token:
            params["sequenceToken"] = sequence_token

        response = self._call("put_log_events", **params)

        rejected = response.get("rejectedLogEventsInfo")
        if rejected:
            logger.warning(
                "CloudWatch Logs rejected part of a batch",
                log_group_name=self.log_group_name,
                log_stream_name=log_stream_name,
                rejected=rejected,
            )
        return response

    def filter_log_events(self, limit: int = VALIDATION_FILTER_LIMIT) -> List[Dict[str, Any]]:
        response = self._call(
            "filter_log_events",
            logGroupName=self.log_group_name,
            limit=limit,
        )
        return response.get("events", [])[:limit]
