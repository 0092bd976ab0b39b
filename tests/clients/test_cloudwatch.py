from unittest.mock import MagicMock

import pytest
from botocore.exceptions import (  # type: ignore
    EndpointConnectionError,
    NoCredentialsError,
    ParamValidationError,
)

from log_shipper.clients.cloudwatch import (
    CloudwatchLogsClient,
    error_message,
    translate_error,
)
from log_shipper.errors import (
    AuthError,
    ConnectivityError,
    DataAlreadyAcceptedError,
    RequestRejectedError,
    ResourceMissingError,
    SequenceConflictError,
    ThrottledError,
)


@pytest.mark.parametrize(
    "code, status, expected",
    [
        ("ThrottlingException", 400, ThrottledError),
        ("TooManyRequestsException", 429, ThrottledError),
        ("ServiceUnavailableException", 503, ConnectivityError),
        ("SomethingUnexpected", 500, ConnectivityError),
        ("AccessDeniedException", 400, AuthError),
        ("UnrecognizedClientException", 400, AuthError),
        ("ExpiredTokenException", 400, AuthError),
        ("ResourceNotFoundException", 400, ResourceMissingError),
        ("InvalidParameterException", 400, RequestRejectedError),
    ],
)
def test_translate_client_errors(make_client_error, code, status, expected):
    translated = translate_error(make_client_error(code, status=status))

    assert type(translated) is expected


def test_translate_sequence_errors_keep_expected_token(make_client_error):
    conflict = translate_error(
        make_client_error("InvalidSequenceTokenException", expectedSequenceToken="abc")
    )
    accepted = translate_error(
        make_client_error("DataAlreadyAcceptedException", expectedSequenceToken="def")
    )

    assert type(conflict) is SequenceConflictError
    assert conflict.expected_sequence_token == "abc"
    assert isinstance(accepted, DataAlreadyAcceptedError)
    assert accepted.expected_sequence_token == "def"


def test_translate_botocore_errors():
    assert isinstance(translate_error(NoCredentialsError()), AuthError)
    assert isinstance(
        translate_error(EndpointConnectionError(endpoint_url="https://logs")),
        ConnectivityError,
    )
    assert isinstance(
        translate_error(ParamValidationError(report="bad logEvents")),
        RequestRejectedError,
    )


def test_error_message_names_service_operation_and_code(make_client_error):
    error = make_client_error(
        "AccessDeniedException", operation="FilterLogEvents", message="Not allowed"
    )

    assert error_message(error) == (
        "Not allowed (Service: FilterLogEvents; Error Code: AccessDeniedException)"
    )


def test_put_log_events_sends_token_only_when_known(logs_client, boto_logs):
    events = [{"timestamp": 1, "message": "a"}]

    logs_client.put_log_events("build-1", events)
    logs_client.put_log_events("build-1", events, "token-1")

    first, second = boto_logs.put_log_events.call_args_list
    assert "sequenceToken" not in first.kwargs
    assert second.kwargs == {
        "logGroupName": "/ci/builds",
        "logStreamName": "build-1",
        "logEvents": events,
        "sequenceToken": "token-1",
    }


def test_calls_raise_translated_errors(logs_client, boto_logs, make_client_error):
    original = make_client_error("ThrottlingException")
    boto_logs.put_log_events.side_effect = original

    with pytest.raises(ThrottledError) as exc_info:
        logs_client.put_log_events("build-1", [])

    assert exc_info.value.__cause__ is original


def test_describe_sequence_token(logs_client, boto_logs):
    boto_logs.describe_log_streams.return_value = {
        "logStreams": [{"logStreamName": "build-1", "uploadSequenceToken": "t1"}]
    }

    assert logs_client.describe_sequence_token("build-1") == "t1"


def test_describe_sequence_token_requires_exact_name(logs_client, boto_logs):
    boto_logs.describe_log_streams.return_value = {
        "logStreams": [{"logStreamName": "build-10", "uploadSequenceToken": "t1"}]
    }

    with pytest.raises(ResourceMissingError):
        logs_client.describe_sequence_token("build-1")


def test_create_log_stream_ignores_existing_stream(
    logs_client, boto_logs, make_client_error
):
    boto_logs.create_log_stream.side_effect = make_client_error(
        "ResourceAlreadyExistsException", operation="CreateLogStream"
    )

    logs_client.create_log_stream("build-1")

    boto_logs.create_log_stream.assert_called_once_with(
        logGroupName="/ci/builds", logStreamName="build-1"
    )


def test_create_log_stream_raises_other_rejections(
    logs_client, boto_logs, make_client_error
):
    boto_logs.create_log_stream.side_effect = make_client_error(
        "InvalidParameterException", operation="CreateLogStream"
    )

    with pytest.raises(RequestRejectedError):
        logs_client.create_log_stream("build-1")


def test_filter_log_events_is_bounded():
    boto_logs = MagicMock()
    boto_logs.filter_log_events.return_value = {
        "events": [{"message": "a"}, {"message": "b"}]
    }

    events = CloudwatchLogsClient(boto_logs, "/ci/builds").filter_log_events()

    boto_logs.filter_log_events.assert_called_once_with(
        logGroupName="/ci/builds", limit=1
    )
    assert events == [{"message": "a"}]
