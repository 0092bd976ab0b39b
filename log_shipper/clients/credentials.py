import threading
import time
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Dict, Optional, Tuple

import structlog
from boto3 import Session  # type: ignore
from botocore.config import Config  # type: ignore
from botocore.credentials import (  # type: ignore
    AssumeRoleCredentialFetcher,
    CredentialProvider,
    CredentialResolver,
    Credentials,
    DeferredRefreshableCredentials,
)
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore
from botocore.session import get_session  # type: ignore

from log_shipper.config.models.credentials import (
    AwsCredentialsYamlConfig,
    CredentialsYamlConfig,
)
from log_shipper.errors import ConfigError

logger = structlog.get_logger(__name__)

ROLE_SESSION_NAME_PREFIX = "log-shipper"


class CredentialsProvider(ABC):
    @property
    @abstractmethod
    def default_region(self) -> Optional[str]:
        pass

    @property
    @abstractmethod
    def default_credentials_id(self) -> Optional[str]:
        pass

    @abstractmethod
    def session(self, credentials_id: str, region: Optional[str]) -> Session:
        """A boto3 session authenticated as `credentials_id`."""
        pass


class _AssumedRoleProvider(CredentialProvider):
    METHOD = "assume-role"

    def __init__(self, refresh_using):
        super().__init__()
        self._refresh_using = refresh_using

    def load(self):
        return DeferredRefreshableCredentials(
            refresh_using=self._refresh_using, method=self.METHOD
        )


class ConfiguredCredentialsProvider(CredentialsProvider):
    """
    Serves the credentials declared in the `credentials` configuration section.

    Entries with a role are backed by refreshable credentials: the role is
    assumed on first use and assumed again before the session expires, so
    clients built from the session keep working past
    `session_duration_seconds`.
    """

    def __init__(self, config: CredentialsYamlConfig):
        self.config = config
        self._entries: Dict[str, AwsCredentialsYamlConfig] = {
            entry.id: entry for entry in config.entries
        }
        self._sessions: Dict[Tuple[str, Optional[str]], Session] = {}
        self._lock = threading.Lock()

    @property
    def default_region(self) -> Optional[str]:
        return self.config.region

    @property
    def default_credentials_id(self) -> Optional[str]:
        return self.config.credentials_id

    def session(self, credentials_id: str, region: Optional[str]) -> Session:
        entry = self._entries.get(credentials_id)
        if entry is None:
            raise ConfigError(f"No credentials found for id: {credentials_id}")

        with self._lock:
            key = (credentials_id, region)
            if key not in self._sessions:
                if entry.iam_role_arn:
                    self._sessions[key] = self._assumed_role_session(entry, region)
                else:
                    self._sessions[key] = Session(
                        aws_access_key_id=entry.aws_access_key_id,
                        aws_secret_access_key=entry.aws_secret_access_key,
                        region_name=region,
                    )
            return self._sessions[key]

    def _assumed_role_session(
        self, entry: AwsCredentialsYamlConfig, region: Optional[str]
    ) -> Session:
        extra_args: Dict[str, Any] = {
            "RoleSessionName": f"{ROLE_SESSION_NAME_PREFIX}-{int(time.time())}",
            "DurationSeconds": entry.session_duration_seconds,
        }
        if entry.iam_external_id:
            extra_args["ExternalId"] = entry.iam_external_id

        botocore_session = get_session()
        fetcher = AssumeRoleCredentialFetcher(
            client_creator=partial(
                botocore_session.create_client, config=Config(region_name=region)
            ),
            source_credentials=Credentials(
                entry.aws_access_key_id, entry.aws_secret_access_key
            ),
            role_arn=entry.iam_role_arn,
            extra_args=extra_args,
        )

        def assume_role() -> Dict[str, Any]:
            try:
                credentials = fetcher.fetch_credentials()
            except (ClientError, BotoCoreError):
                logger.error(
                    f"Failed to assume role {entry.iam_role_arn}",
                    credentials_id=entry.id,
                    exc_info=True,
                )
                raise
            logger.debug(
                "Assumed role for credentials",
                credentials_id=entry.id,
                role_arn=entry.iam_role_arn,
                expiration=credentials.get("expiry_time"),
            )
            return credentials

        botocore_session.register_component(
            "credential_provider",
            CredentialResolver(providers=[_AssumedRoleProvider(assume_role)]),
        )
        return Session(botocore_session=botocore_session, region_name=region)
