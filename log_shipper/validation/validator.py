from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from log_shipper.clients.cloudwatch import CloudwatchLogsClient, error_message
from log_shipper.clients.factory import AwsClientFactory
from log_shipper.clients.iam import PolicySimulator
from log_shipper.config.models.cloudwatch import (
    LOG_GROUP_NAME_MAX_LENGTH,
    LOG_GROUP_NAME_PATTERN,
)

logger = structlog.get_logger(__name__)

MAX_DISPLAY_LENGTH = 200
ELLIPSIS = "..."


def abbreviate_message(message: str, max_width: int = MAX_DISPLAY_LENGTH) -> str:
    if len(message) <= max_width:
        return message
    return message[: max_width - len(ELLIPSIS)] + ELLIPSIS


class ValidationKind(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationResult:
    kind: ValidationKind
    message: str

    @classmethod
    def ok(cls, message: str = "") -> "ValidationResult":
        return cls(ValidationKind.OK, message)

    @classmethod
    def warning(cls, message: str) -> "ValidationResult":
        return cls(ValidationKind.WARNING, message)

    @classmethod
    def error(cls, message: str) -> "ValidationResult":
        return cls(ValidationKind.ERROR, message)

    @property
    def is_error(self) -> bool:
        return self.kind == ValidationKind.ERROR

    def abbreviate(self, max_width: int = MAX_DISPLAY_LENGTH) -> "ValidationResult":
        return ValidationResult(self.kind, abbreviate_message(self.message, max_width))


def check_log_group_name(log_group_name: Optional[str]) -> ValidationResult:
    if log_group_name is None or not log_group_name.strip():
        return ValidationResult.warning("The log group name cannot be empty")
    if len(log_group_name) > LOG_GROUP_NAME_MAX_LENGTH:
        return ValidationResult.error(
            f"The log group name cannot be longer than {LOG_GROUP_NAME_MAX_LENGTH} characters"
        )
    if not LOG_GROUP_NAME_PATTERN.match(log_group_name):
        return ValidationResult.error(
            "The log group name can only contain letters, digits and the characters . - _ / #"
        )
    return ValidationResult.ok()


class ConfigurationValidator:
    """
    Preflight check run before the pipeline is activated.

    Confirms the credentials work, the log group can be read, and that a
    policy simulation allows the writes the shipper will perform. Every
    failure is returned as a ValidationResult; nothing is raised.
    """

    def __init__(self, client_factory: AwsClientFactory):
        self.client_factory = client_factory

    def validate(
        self,
        log_group_name: Optional[str],
        region: Optional[str],
        credentials_id: Optional[str],
        abbreviate: bool = False,
    ) -> ValidationResult:
        def shorten(message: str) -> str:
            return abbreviate_message(message) if abbreviate else message

        if log_group_name is None or not log_group_name.strip():
            return check_log_group_name(log_group_name)

        try:
            logs_client = CloudwatchLogsClient(
                self.client_factory.logs_client(region, credentials_id),
                log_group_name,
            )
        except Exception as e:
            logger.warning("Unable to build a CloudWatch Logs client", exc_info=True)
            return ValidationResult.error(
                f"Unable to validate credentials: {shorten(error_message(e))}"
            )

        try:
            logs_client.filter_log_events()
        except Exception as e:
            logger.warning(
                "Read check failed", log_group_name=log_group_name, exc_info=True
            )
            return ValidationResult.error(abbreviate_message(error_message(e)))

        try:
            simulator = PolicySimulator(
                self.client_factory.sts_client(region, credentials_id),
                self.client_factory.iam_client(region, credentials_id),
                region,
            )
            restriction = simulator.restriction(log_group_name)
        except Exception as e:
            logger.warning(
                "Policy simulation failed", log_group_name=log_group_name, exc_info=True
            )
            return ValidationResult.error(
                f"Unable to simulate policy restriction: {shorten(error_message(e))}"
            )

        if restriction is not None:
            return ValidationResult.warning(restriction)
        return ValidationResult.ok("success")
