from unittest.mock import MagicMock, patch

import pytest

from log_shipper.clients.factory import AwsClientFactory


@pytest.fixture
def credentials_provider():
    return MagicMock()


def test_logs_client_comes_from_the_credentials_session(credentials_provider):
    factory = AwsClientFactory(credentials_provider)
    session = credentials_provider.session.return_value

    result = factory.logs_client("eu-west-1", "ci-deployer")

    assert result is session.client.return_value
    credentials_provider.session.assert_called_once_with("ci-deployer", "eu-west-1")
    args, kwargs = session.client.call_args
    assert args == ("logs",)
    assert kwargs["config"].region_name == "eu-west-1"
    assert kwargs["config"].retries["total_max_attempts"] == 1


@patch("log_shipper.clients.factory.client")
def test_default_credential_chain_without_id(mock_client, credentials_provider):
    factory = AwsClientFactory(credentials_provider)

    factory.sts_client(None, None)
    factory.iam_client(None, None)

    credentials_provider.session.assert_not_called()
    assert [c.args for c in mock_client.call_args_list] == [("sts",), ("iam",)]
    assert "aws_access_key_id" not in mock_client.call_args.kwargs
