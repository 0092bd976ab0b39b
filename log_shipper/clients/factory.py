from enum import Enum
from typing import Optional

from boto3 import client  # type: ignore
from botocore.client import BaseClient  # type: ignore
from botocore.config import Config  # type: ignore

from log_shipper.clients.credentials import CredentialsProvider


class ClientType(Enum):
    LOGS = "logs"
    STS = "sts"
    IAM = "iam"


class AwsClientFactory:
    """
    Builds authenticated boto3 clients for a region and credentials id.

    Without a credentials id boto3's default credential chain is used.
    """

    def __init__(self, credentials_provider: CredentialsProvider):
        self.credentials_provider = credentials_provider

    def _get_client(
        self,
        client_type: ClientType,
        region: Optional[str],
        credentials_id: Optional[str],
    ) -> BaseClient:
        # Backoff is owned by RetryController, not by botocore
        config = Config(
            region_name=region,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        if credentials_id is None:
            return client(client_type.value, config=config)

        session = self.credentials_provider.session(credentials_id, region)
        return session.client(client_type.value, config=config)

    def logs_client(self, region: Optional[str], credentials_id: Optional[str]) -> BaseClient:
        return self._get_client(ClientType.LOGS, region, credentials_id)

    def sts_client(self, region: Optional[str], credentials_id: Optional[str]) -> BaseClient:
        return self._get_client(ClientType.STS, region, credentials_id)

    def iam_client(self, region: Optional[str], credentials_id: Optional[str]) -> BaseClient:
        return self._get_client(ClientType.IAM, region, credentials_id)
