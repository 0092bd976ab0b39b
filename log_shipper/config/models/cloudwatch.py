import re
from typing import Optional

from pydantic import (
    BaseModel,
    Field,
    PositiveFloat,
    PositiveInt,
    StrictStr,
    field_validator,
    model_validator,
)

from log_shipper.errors import ConfigError

# https://docs.aws.amazon.com/AmazonCloudWatchLogs/latest/APIReference/API_PutLogEvents.html
MAX_BATCH_BYTES = 1_048_576
MAX_BATCH_COUNT = 10_000
EVENT_OVERHEAD_BYTES = 26
MAX_EVENT_BYTES = 262_144
MAX_BATCH_SPAN_MS = 24 * 60 * 60 * 1000

LOG_GROUP_NAME_PATTERN = re.compile(r"^[\.\-_/#A-Za-z0-9]+$")
LOG_GROUP_NAME_MAX_LENGTH = 512
LOG_STREAM_NAME_MAX_LENGTH = 512


class CloudwatchLogsYamlConfig(BaseModel):
    log_group_name: StrictStr
    log_stream_prefix: StrictStr = ""
    region: Optional[StrictStr] = None
    credentials_id: Optional[StrictStr] = None

    @field_validator("region", "credentials_id", mode="before")
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("log_stream_prefix")
    def validate_log_stream_prefix(cls, v: str) -> str:
        if ":" in v or "*" in v:
            raise ValueError("log_stream_prefix cannot contain ':' or '*'")
        return v

    def stream_name(self, name: str) -> str:
        stream_name = f"{self.log_stream_prefix}{name}"
        if not name or ":" in name or "*" in name:
            raise ConfigError(f"Invalid log stream name: {name!r}")
        if len(stream_name) > LOG_STREAM_NAME_MAX_LENGTH:
            raise ConfigError(
                f"Log stream name exceeds {LOG_STREAM_NAME_MAX_LENGTH} characters: {stream_name[:40]}..."
            )
        return stream_name


class BufferYamlConfig(BaseModel):
    max_batch_bytes: PositiveInt = Field(default=MAX_BATCH_BYTES, le=MAX_BATCH_BYTES)
    max_batch_count: PositiveInt = Field(default=MAX_BATCH_COUNT, le=MAX_BATCH_COUNT)
    flush_interval_seconds: PositiveFloat = 5.0
    clock_skew_tolerance_ms: int = Field(default=1_000, ge=0)
    # Per stream, counting both buffered events and batches awaiting delivery.
    max_buffered_bytes: PositiveInt = Field(
        default=64 * MAX_BATCH_BYTES, ge=MAX_EVENT_BYTES + EVENT_OVERHEAD_BYTES
    )


class RetryYamlConfig(BaseModel):
    max_attempts: PositiveInt = 5
    wait_initial: PositiveFloat = 0.2
    throttled_wait_max: PositiveFloat = 10.0
    transient_wait_max: PositiveFloat = 2.0
    wait_jitter: float = Field(default=0.5, ge=0)

    @model_validator(mode="after")
    def validate_wait_caps(self):
        if self.transient_wait_max > self.throttled_wait_max:
            raise ValueError(
                "transient_wait_max must not be greater than throttled_wait_max"
            )
        return self
