from log_shipper.config.models.secrets import SecretProvider, SecretsYamlConfig
from log_shipper.config.secrets.manager import SecretManager


class SecretManagerFactory:
    @staticmethod
    def create(config: SecretsYamlConfig) -> SecretManager:
        if config.provider == SecretProvider.AWS and config.aws:
            from log_shipper.config.secrets.aws_secrets_manager import AwsSecretManager

            return AwsSecretManager(config.aws)
        raise ValueError(f"Unsupported secrets provider: {config.provider}")
