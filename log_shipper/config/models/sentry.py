from typing import Optional

import sentry_sdk
import structlog
from pydantic import BaseModel, Field, StrictStr, confloat

logger = structlog.get_logger(__name__)


class SentryYamlConfig(BaseModel):
    dsn: StrictStr
    traces_sample_rate: confloat(ge=0, le=1) = Field(  # type: ignore
        default=0.0, description="Traces sample rate (0.0 to 1.0)"
    )
    environment: StrictStr
    release: Optional[StrictStr] = None
    ci_instance: Optional[StrictStr] = Field(
        default=None, description="Name of the CI server shipping the logs"
    )


def initialize_sentry(config: SentryYamlConfig, log_group_name: str) -> None:
    sentry_sdk.init(
        dsn=config.dsn,
        traces_sample_rate=config.traces_sample_rate,
        release=config.release,
        environment=config.environment,
    )
    sentry_sdk.set_tag("log_group_name", log_group_name)
    if config.ci_instance:
        sentry_sdk.set_tag("ci_instance", config.ci_instance)
    logger.info(
        "Sentry initialized for the log shipper",
        environment=config.environment,
        ci_instance=config.ci_instance,
    )
