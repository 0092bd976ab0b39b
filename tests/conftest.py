import logging
from unittest.mock import MagicMock

import pytest
import stamina
import structlog
from botocore.exceptions import ClientError  # type: ignore

from log_shipper.clients.cloudwatch import CloudwatchLogsClient
from log_shipper.config.models.cloudwatch import RetryYamlConfig
from log_shipper.shipper.retry import RetryController
from log_shipper.shipper.types import LogEvent, LogEventBatch
from log_shipper.utils.time_conversion import now_milliseconds

LOG_GROUP = "/ci/builds"
LOG_STREAM = "build-42"


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Configure structlog to use testing configuration."""
    structlog.configure(
        processors=[
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setLevel(logging.WARNING)

    root = logging.getLogger()
    root.addHandler(handler)

    yield

    root.removeHandler(handler)


@pytest.fixture
def make_client_error():
    def _make(code, operation="PutLogEvents", message=None, status=400, **extra):
        response = {
            "Error": {"Code": code, "Message": message or f"{code} raised"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        }
        response.update(extra)
        return ClientError(response, operation)

    return _make


@pytest.fixture
def fast_retry_config():
    return RetryYamlConfig(
        max_attempts=4,
        wait_initial=0.001,
        throttled_wait_max=0.01,
        transient_wait_max=0.002,
        wait_jitter=0,
    )


@pytest.fixture
def retry_controller(fast_retry_config):
    return RetryController(fast_retry_config)


@pytest.fixture
def retry_waits():
    waits = []
    stamina.instrumentation.set_on_retry_hooks(
        [lambda details: waits.append(details.wait_for)]
    )
    yield waits
    stamina.instrumentation.set_on_retry_hooks(None)


@pytest.fixture
def boto_logs():
    logs = MagicMock()
    logs.put_log_events.return_value = {"nextSequenceToken": "token-1"}
    logs.describe_log_streams.return_value = {
        "logStreams": [{"logStreamName": LOG_STREAM, "uploadSequenceToken": "fresh"}]
    }
    logs.filter_log_events.return_value = {"events": []}
    return logs


@pytest.fixture
def logs_client(boto_logs):
    return CloudwatchLogsClient(boto_logs, LOG_GROUP)


@pytest.fixture
def make_batch():
    def _make(*messages):
        now = now_milliseconds()
        return LogEventBatch(
            [LogEvent(timestamp=now + i, message=m) for i, m in enumerate(messages)]
        )

    return _make


@pytest.fixture
def valid_config_dict():
    return {
        "cloudwatch": {
            "log_group_name": LOG_GROUP,
            "log_stream_prefix": "jenkins/",
            "region": "us-east-1",
            "credentials_id": "ci-deployer",
        },
        "credentials": {
            "entries": [
                {
                    "id": "ci-deployer",
                    "aws_access_key_id": "fake_access_key",
                    "aws_secret_access_key": "fake_secret_key",
                }
            ]
        },
        "buffer": {"flush_interval_seconds": 1.0},
        "retry": {"max_attempts": 3},
        "secrets": {"use_secrets_manager": False},
    }
