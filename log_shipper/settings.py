import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
import yaml
from pydantic import BaseModel, StrictStr

from log_shipper.clients.cloudwatch import CloudwatchLogsClient
from log_shipper.clients.credentials import CredentialsProvider
from log_shipper.clients.factory import AwsClientFactory
from log_shipper.errors import ConfigError, OperatorNotAuthorizedError
from log_shipper.validation.validator import (
    ConfigurationValidator,
    ValidationKind,
    ValidationResult,
    check_log_group_name,
)

logger = structlog.get_logger(__name__)


class CloudwatchLogsSettings(BaseModel):
    log_group_name: Optional[StrictStr] = None


class SettingsStore(ABC):
    @abstractmethod
    def load(self) -> Optional[CloudwatchLogsSettings]:
        """Return the stored settings, or None when nothing was saved yet."""
        pass

    @abstractmethod
    def save(self, settings: CloudwatchLogsSettings) -> None:
        pass


class InMemorySettingsStore(SettingsStore):
    def __init__(self, settings: Optional[CloudwatchLogsSettings] = None):
        self.settings = settings
        self.saves = 0

    def load(self) -> Optional[CloudwatchLogsSettings]:
        return self.settings.model_copy() if self.settings else None

    def save(self, settings: CloudwatchLogsSettings) -> None:
        self.settings = settings.model_copy()
        self.saves += 1


class YamlFileSettingsStore(SettingsStore):
    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[CloudwatchLogsSettings]:
        if not self.path.exists():
            return None
        with self.path.open("r") as file:
            data = yaml.safe_load(file) or {}
        return CloudwatchLogsSettings(**data)

    def save(self, settings: CloudwatchLogsSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so readers never see a half written file
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w") as file:
            yaml.safe_dump(settings.model_dump(), file)
        tmp_path.replace(self.path)


@dataclass(frozen=True)
class Operator:
    name: str
    can_administer: bool = False


def _fix_empty_and_trim(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class CloudwatchLogsConfiguration:
    """The "Amazon CloudWatch Logs settings" surface operators interact with."""

    display_name = "Amazon CloudWatch Logs settings"

    def __init__(
        self,
        store: SettingsStore,
        credentials: CredentialsProvider,
        client_factory: Optional[AwsClientFactory] = None,
        validator: Optional[ConfigurationValidator] = None,
    ):
        self.store = store
        self.credentials = credentials
        self.client_factory = client_factory or AwsClientFactory(credentials)
        self.validator = validator or ConfigurationValidator(self.client_factory)
        self._lock = threading.Lock()
        self._settings = store.load() or CloudwatchLogsSettings()

    @property
    def log_group_name(self) -> Optional[str]:
        return self._settings.log_group_name

    @log_group_name.setter
    def log_group_name(self, log_group_name: str) -> None:
        self.set_log_group_name(log_group_name)

    def set_log_group_name(self, log_group_name: Optional[str]) -> None:
        result = self.check_log_group_name(log_group_name)
        if result.kind != ValidationKind.OK:
            raise ConfigError(result.message)

        with self._lock:
            settings = self._settings.model_copy(
                update={"log_group_name": log_group_name}
            )
            self.store.save(settings)
            self._settings = settings
        logger.info("Log group name updated", log_group_name=log_group_name)

    def check_log_group_name(self, log_group_name: Optional[str]) -> ValidationResult:
        return check_log_group_name(log_group_name)

    def get_logs_client(self) -> CloudwatchLogsClient:
        if not self.log_group_name:
            raise ConfigError("The log group name is not configured")
        return CloudwatchLogsClient(
            self.client_factory.logs_client(
                self.credentials.default_region,
                self.credentials.default_credentials_id,
            ),
            self.log_group_name,
        )

    def validate(
        self,
        operator: Operator,
        log_group_name: Optional[str],
        region: Optional[str],
        credentials_id: Optional[str],
    ) -> ValidationResult:
        if not operator.can_administer:
            logger.warning(
                "Operator attempted to validate without permission",
                operator=operator.name,
            )
            raise OperatorNotAuthorizedError(
                f"{operator.name} is missing the administer permission"
            )

        result = self.validator.validate(
            log_group_name,
            _fix_empty_and_trim(region),
            _fix_empty_and_trim(credentials_id),
            abbreviate=True,
        )
        logger.info(
            "Validated CloudWatch Logs settings",
            operator=operator.name,
            log_group_name=log_group_name,
            result=result.kind.value,
        )
        return result
