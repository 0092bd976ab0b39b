import json
from typing import Any, Dict, Union

import boto3  # type: ignore
import structlog

from log_shipper.config.models.secrets import AwsSecretsManagerYamlConfig
from log_shipper.config.secrets.manager import SecretManager

logger = structlog.get_logger(__name__)


class AwsSecretManager(SecretManager):
    def __init__(self, config: AwsSecretsManagerYamlConfig):
        # Without explicit keys boto3 falls back to its default credential chain
        self.secrets_client = boto3.client(
            "secretsmanager",
            region_name=config.region,
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
        )

    def resolve_secret(self, secret_id: str) -> Union[str, Dict[str, Any]]:
        response = self.secrets_client.get_secret_value(SecretId=secret_id)

        if "SecretString" not in response:
            raise ValueError(f"Secret {secret_id} is not stored as a string")

        secret_string = response["SecretString"]
        try:
            parsed = json.loads(secret_string)
        except json.JSONDecodeError:
            return secret_string
        return parsed if isinstance(parsed, dict) else secret_string
