from enum import Enum
from typing import Optional

from pydantic import BaseModel, StrictBool, StrictStr, model_validator


class SecretProvider(str, Enum):
    AWS = "aws"


class AwsSecretsManagerYamlConfig(BaseModel):
    region: StrictStr
    aws_access_key_id: Optional[StrictStr] = None
    aws_secret_access_key: Optional[StrictStr] = None


class SecretsYamlConfig(BaseModel):
    use_secrets_manager: StrictBool = False
    provider: Optional[SecretProvider] = None

    aws: Optional[AwsSecretsManagerYamlConfig] = None

    @model_validator(mode="before")
    def validate_secrets_manager(cls, values):
        if not values.get("use_secrets_manager", False):
            return values

        provider = values.get("provider")
        if not provider:
            raise ValueError("Provider is required when use_secrets_manager is True")

        if not values.get(str(provider).lower()):
            raise ValueError(f'Missing secrets provider configuration for "{provider}"')
        return values
