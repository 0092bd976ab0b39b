from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Union

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

SECRET_PREFIX = "secret"


def parse_secret_reference(value: str) -> Optional[Tuple[str, Optional[str]]]:
    """
    Parse a `secret:<secret_id>` or `secret|<key>:<secret_id>` reference.

    Returns (secret_id, key) or None when the value is a plain string.
    """
    if not value.startswith(f"{SECRET_PREFIX}:") and not value.startswith(
        f"{SECRET_PREFIX}|"
    ):
        return None

    secret_info, _, secret_id = value.partition(":")
    if not secret_id:
        raise ValueError(f"Invalid secret reference: {value}")

    key = None
    if "|" in secret_info:
        _, key = secret_info.split("|", 1)
        if not key:
            raise ValueError(f"Invalid secret reference, empty key: {value}")
    return secret_id, key


class SecretManager(ABC):
    @abstractmethod
    def resolve_secret(self, secret_id: str) -> Union[str, Dict[str, Any]]:
        pass

    def resolve_secrets(self, config: BaseModel) -> None:
        """Replace every secret reference in the configuration, in place."""
        logger.info("Starting secrets resolution")
        self._resolve_in(config)
        logger.info("Completed secrets resolution")

    def _resolve_in(self, obj: Any) -> None:
        if isinstance(obj, BaseModel):
            for field in type(obj).model_fields:
                setattr(obj, field, self._resolve_value(getattr(obj, field), field))
        elif isinstance(obj, list):
            for i, value in enumerate(obj):
                obj[i] = self._resolve_value(value, f"index {i}")
        elif isinstance(obj, dict):
            for key, value in obj.items():
                obj[key] = self._resolve_value(value, key)

    def _resolve_value(self, value: Any, context: str) -> Any:
        if isinstance(value, (BaseModel, dict, list)):
            self._resolve_in(value)
            return value
        if not isinstance(value, str):
            return value

        reference = parse_secret_reference(value)
        if reference is None:
            return value

        secret_id, key = reference
        try:
            resolved = self.resolve_secret(secret_id)
        except Exception as e:
            raise ValueError(f"Error resolving secret for {context}: {str(e)}") from e

        if key is None:
            if isinstance(resolved, dict):
                raise ValueError(
                    f"Secret {secret_id} for {context} resolves to a dictionary, but no key was specified"
                )
            logger.info(f"Resolved secret '{secret_id}' for {context}")
            return resolved

        if not isinstance(resolved, dict):
            raise ValueError(
                f"Secret {secret_id} for {context} does not resolve to a dictionary"
            )
        if key not in resolved:
            raise KeyError(
                f"Key '{key}' not found in secret {secret_id} for {context}. Available keys: {', '.join(resolved.keys())}"
            )
        logger.info(f"Resolved secret '{secret_id}' using key '{key}' for {context}")
        return resolved[key]
