from typing import List, Optional

from pydantic import BaseModel, StrictStr, field_validator, model_validator


class AwsCredentialsYamlConfig(BaseModel):
    id: StrictStr
    aws_access_key_id: StrictStr
    aws_secret_access_key: StrictStr
    iam_role_arn: Optional[StrictStr] = None
    iam_external_id: Optional[StrictStr] = None
    session_duration_seconds: int = 3600

    @field_validator("iam_role_arn")
    def validate_role_arn(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if v.startswith(("secret:", "secret|")):
            return v
        if not v.startswith("arn:") or ":role/" not in v:
            raise ValueError(f'Invalid IAM role ARN "{v}"')
        return v


class CredentialsYamlConfig(BaseModel):
    region: Optional[StrictStr] = None
    credentials_id: Optional[StrictStr] = None
    entries: List[AwsCredentialsYamlConfig] = []

    @model_validator(mode="after")
    def validate_default_credentials_id(self):
        ids = [entry.id for entry in self.entries]
        duplicates = set([x for x in ids if ids.count(x) > 1])
        if duplicates:
            raise ValueError(f"Duplicate credentials ids: {', '.join(duplicates)}")

        if self.credentials_id and self.credentials_id not in ids:
            raise ValueError(
                f'Default credentials_id "{self.credentials_id}" is not one of the configured entries'
            )
        return self
