"""
Warehouse configuration and BigQuery client construction.

NOTE: This is the base module. Other modules depend on it
to avoid circular imports. Do not import other facade modules here
except ``errors``.
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from google.cloud import bigquery
from google.oauth2 import service_account

from .errors import WarehouseConfigError

logger = logging.getLogger(__name__)

AUTH_PRIVATE_KEY = "PrivateKey"
AUTH_KEY_FILE = "KeyFile"

_REQUIRED_CREDENTIAL_FIELDS = ("client_email", "private_key")

_OPTION_ALIASES = {
    "projectId": "project_id",
    "project_id": "project_id",
    "credentials": "credentials",
    "keyFilename": "key_filename",
    "key_filename": "key_filename",
    "location": "location",
}


@dataclass(frozen=True)
class WarehouseConfig:
    """Configuration for one BigQuery project."""
    project_id: str
    credentials: Optional[Mapping[str, Any]] = None
    key_filename: Optional[str] = None
    location: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.project_id, str) or not self.project_id.strip():
            raise WarehouseConfigError("projectId is required and cannot be empty.")
        if self.credentials is not None:
            _validate_credentials(self.credentials)

    @property
    def auth_method(self) -> str:
        """Private-key credentials take precedence over a key file."""
        return AUTH_PRIVATE_KEY if self.credentials is not None else AUTH_KEY_FILE

    def describe(self) -> Dict[str, str]:
        """Non-secret summary of how the client authenticates."""
        email = self.credentials["client_email"] if self.credentials is not None else "n/a"
        return {
            "projectId": self.project_id,
            "email": email,
            "method": self.auth_method,
        }

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "WarehouseConfig":
        """
        Build a config from a construction record such as
        ``{"projectId": "p1", "credentials": {...}}``.

        Both camelCase and snake_case keys are recognised; anything else is ignored.
        """
        if not isinstance(options, Mapping):
            raise WarehouseConfigError(
                f"Configuration must be a mapping, got {type(options).__name__}."
            )
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            field_name = _OPTION_ALIASES.get(key)
            if field_name is None:
                logger.debug(f"Ignoring unrecognised configuration option '{key}'")
                continue
            kwargs[field_name] = value
        if "project_id" not in kwargs:
            raise WarehouseConfigError("projectId is required and cannot be empty.")
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WarehouseConfig":
        """
        Build a config from environment variables.

        GOOGLE_CLOUD_PROJECT is required. BIGQUERY_CREDENTIALS_JSON holds inline
        service-account JSON, BIGQUERY_KEY_FILE a path to a key file and
        BIGQUERY_LOCATION the default job location.
        """
        env = os.environ if environ is None else environ
        project_id = env.get("GOOGLE_CLOUD_PROJECT", "").strip()
        if not project_id:
            raise WarehouseConfigError(
                "GOOGLE_CLOUD_PROJECT is not set. Export it before starting the server."
            )

        credentials = None
        raw_credentials = env.get("BIGQUERY_CREDENTIALS_JSON")
        if raw_credentials:
            try:
                credentials = json.loads(raw_credentials)
            except json.JSONDecodeError as e:
                raise WarehouseConfigError(
                    f"BIGQUERY_CREDENTIALS_JSON is not valid JSON: {e}"
                ) from e

        return cls(
            project_id=project_id,
            credentials=credentials,
            key_filename=env.get("BIGQUERY_KEY_FILE") or None,
            location=env.get("BIGQUERY_LOCATION") or None,
        )


def _validate_credentials(credentials: Any) -> None:
    if not isinstance(credentials, Mapping):
        raise WarehouseConfigError(
            f"credentials must be a mapping, got {type(credentials).__name__}."
        )
    missing = [f for f in _REQUIRED_CREDENTIAL_FIELDS if not credentials.get(f)]
    if missing:
        raise WarehouseConfigError(
            f"credentials are missing required fields: {', '.join(missing)}"
        )


def coerce_config(config: Any) -> WarehouseConfig:
    """Accept either a ``WarehouseConfig`` or a construction mapping."""
    if isinstance(config, WarehouseConfig):
        return config
    return WarehouseConfig.from_mapping(config)


def build_client(config: WarehouseConfig) -> bigquery.Client:
    """
    Create a BigQuery client for the configured project.

    Uses, in order of precedence: inline private-key credentials, an explicit
    key file, then Application Default Credentials.
    """
    if config.credentials is not None:
        logger.debug(
            f"Creating BigQuery client for project '{config.project_id}' "
            f"with private-key credentials ({config.credentials['client_email']})"
        )
        creds = service_account.Credentials.from_service_account_info(
            dict(config.credentials)
        )
        return bigquery.Client(
            project=config.project_id, credentials=creds, location=config.location
        )

    if config.key_filename:
        logger.debug(
            f"Creating BigQuery client for project '{config.project_id}' "
            f"from key file {config.key_filename}"
        )
        return bigquery.Client.from_service_account_json(
            config.key_filename, project=config.project_id, location=config.location
        )

    logger.debug(
        f"Creating BigQuery client for project '{config.project_id}' "
        "with application default credentials"
    )
    return bigquery.Client(project=config.project_id, location=config.location)
