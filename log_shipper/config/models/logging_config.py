from enum import Enum

from pydantic import BaseModel, field_validator


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


class LoggingYamlConfig(BaseModel):
    level: str = "INFO"
    format: LogFormat = LogFormat.CONSOLE

    @field_validator("level")
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f'Invalid log level "{v}"')
        return level
