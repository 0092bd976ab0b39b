import abc
import base64
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional, cast

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .models.cloudwatch import BufferYamlConfig, CloudwatchLogsYamlConfig, RetryYamlConfig
from .models.credentials import CredentialsYamlConfig
from .models.logging_config import LoggingYamlConfig
from .models.secrets import SecretsYamlConfig
from .models.sentry import SentryYamlConfig
from .secrets.factory import SecretManagerFactory

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/shipper-config.yaml")


class ShipperYamlConfig(BaseModel):
    cloudwatch: CloudwatchLogsYamlConfig
    credentials: CredentialsYamlConfig = Field(default_factory=CredentialsYamlConfig)
    buffer: BufferYamlConfig = Field(default_factory=BufferYamlConfig)
    retry: RetryYamlConfig = Field(default_factory=RetryYamlConfig)
    secrets: SecretsYamlConfig = Field(default_factory=SecretsYamlConfig)
    logging: LoggingYamlConfig = Field(default_factory=LoggingYamlConfig)
    sentry: Optional[SentryYamlConfig] = None
    settings_file: Optional[Path] = None

    @model_validator(mode="after")
    def check_credentials_reference(self):
        credentials_id = self.cloudwatch.credentials_id
        known_ids = [entry.id for entry in self.credentials.entries]
        if credentials_id and credentials_id not in known_ids:
            raise ValueError(
                f'cloudwatch.credentials_id "{credentials_id}" is not one of the configured credentials'
            )

        if not self.cloudwatch.log_group_name.strip():
            logger.warning(
                "Empty log_group_name found in cloudwatch configuration. Logs cannot be shipped until it is set."
            )
        return self

    @property
    def region(self) -> Optional[str]:
        return self.cloudwatch.region or self.credentials.region

    @property
    def credentials_id(self) -> Optional[str]:
        return self.cloudwatch.credentials_id or self.credentials.credentials_id


class ConfigurationManager(abc.ABC):
    @abc.abstractmethod
    def _do_load_raw_config(self) -> dict: ...

    def load_config(self) -> ShipperYamlConfig:
        try:
            config_data = self._do_load_raw_config()
            config = ShipperYamlConfig(**(config_data or {}))

            if config.secrets.use_secrets_manager:
                self._resolve_secrets(config)

            return config

        except ValidationError as e:
            logger.error("Configuration validation failed:", exc_info=e)
            for error in e.errors():
                logger.error(f"Field: {error['loc']} - Error: {error['msg']}")
            sys.exit(1)
        except yaml.YAMLError as e:
            logger.error("Error parsing YAML configuration:", exc_info=e)
            sys.exit(1)

    @staticmethod
    def _resolve_secrets(config: ShipperYamlConfig) -> None:
        try:
            secret_manager = SecretManagerFactory.create(config.secrets)
            secret_manager.resolve_secrets(config)
        except KeyError as e:
            logger.error(f"Error resolving secret: {str(e)}")
            logger.info(
                "Please check your secret key and ensure it exists in the secret manager."
            )
            sys.exit(1)
        except ValueError as e:
            logger.error(f"Invalid secret format: {str(e)}")
            logger.info("Please check your secret format in the configuration file.")
            sys.exit(1)


class Base64EncodedConfig(ConfigurationManager):
    def __init__(self, config_value: str):
        self._config_value = config_value

    def _do_load_raw_config(self) -> dict:
        return yaml.safe_load(base64.b64decode(self._config_value))


class FileConfigurationManager(ConfigurationManager):
    def __init__(self, config_path: Path):
        self._config_path = config_path

    def _do_load_raw_config(self) -> dict:
        if not self._config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self._config_path}"
            )
        with self._config_path.open("r") as file:
            return yaml.safe_load(file)


def get_config_manager(
    env: dict[str, str] = cast(dict[str, str], os.environ)
) -> ConfigurationManager:
    if base64_config := env.get("BASE64_CONFIG"):
        return Base64EncodedConfig(base64_config)

    if config_file := env.get("CONFIG_FILE"):
        return FileConfigurationManager(Path(config_file))

    return FileConfigurationManager(DEFAULT_CONFIG_PATH)


@lru_cache
def get_config() -> ShipperYamlConfig:
    return get_config_manager().load_config()
