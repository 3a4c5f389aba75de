"""
Configuration module for IdP SCIM Sync.

Settings come from, in decreasing precedence: explicit overrides (CLI
flags), ``IDPSCIM_`` environment variables, a ``.env`` file and a YAML
config file. Everything is validated before any network I/O.
"""

import os
from pathlib import Path
from typing import Any, List, Optional, Tuple, Type

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    SettingsError,
    YamlConfigSettingsSource,
)

from .errors import ConfigurationError


DEFAULT_CONFIG_FILE = ".idpscim.yaml"
CONFIG_FILE_ENV = "IDPSCIM_CONFIG_FILE"

SYNC_METHOD_GROUPS = "groups"
# Recognized sync methods that are not implemented
UNIMPLEMENTED_SYNC_METHODS = ("users", "org-units")

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
VALID_LOG_FORMATS = ["text", "json"]
VALID_STATE_BACKENDS = ["s3", "disk"]


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class SyncSettings(BaseSettings):
    """
    Configuration settings for a sync run.

    List valued settings (group filters, scopes) are comma separated strings
    so they can be given as plain environment variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="IDPSCIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    config_file: Optional[str] = Field(None, description="YAML config file path")

    # Logging
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    log_format: str = Field("text", description="Log output format (text, json)")
    debug: bool = Field(False, description="Force DEBUG logging")
    is_lambda: bool = Field(False, description="Running inside AWS Lambda")

    sync_method: str = Field(SYNC_METHOD_GROUPS, description="Sync method, only 'groups' is implemented")
    apply_order: str = Field("groups-first", description="groups-first or users-first")
    dry_run: bool = Field(False, description="Plan only, do not apply or persist")
    max_workers: int = Field(10, ge=1, description="Concurrent directory lookups")

    # Google Workspace
    gws_service_account_file: Optional[Path] = Field(None, description="Service account key file")
    gws_user_email: Optional[str] = Field(None, description="Workspace user to impersonate")
    gws_groups_filter: str = Field("", description="Comma separated group filter expressions")
    gws_service_account_scopes: str = Field("", description="Comma separated OAuth scopes, empty for defaults")

    # Secrets Manager
    use_secrets_manager: bool = Field(False, description="Read credentials from AWS Secrets Manager")
    gws_service_account_file_secret_name: str = "IDPSCIM_GWSServiceAccountFile"
    gws_user_email_secret_name: str = "IDPSCIM_GWSUserEmail"
    aws_scim_endpoint_secret_name: str = "IDPSCIM_SCIMEndpoint"
    aws_scim_access_token_secret_name: str = "IDPSCIM_SCIMAccessToken"

    # SCIM target
    aws_scim_endpoint: Optional[str] = Field(None, description="SCIM base URL")
    aws_scim_access_token: Optional[str] = Field(None, description="SCIM bearer token")

    # State
    state_backend: str = Field("s3", description="Where the state is stored (s3, disk)")
    aws_s3_bucket_name: Optional[str] = Field(None, description="Bucket holding the state")
    aws_s3_bucket_key: str = Field("state.json", description="Object key of the state")
    state_file: Path = Field(Path("state.json"), description="State file for the disk backend")

    # HTTP
    http_timeout: float = Field(30.0, gt=0, description="Per-request timeout in seconds")
    http_max_attempts: int = Field(5, ge=1, description="Attempts per call for retryable failures")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        config_file = (
            init_settings.init_kwargs.get("config_file")
            or os.environ.get(CONFIG_FILE_ENV)
            or DEFAULT_CONFIG_FILE
        )
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=config_file)
        return init_settings, env_settings, dotenv_settings, yaml_settings, file_secret_settings

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")
        return v.upper()

    @field_validator("log_format", "state_backend")
    @classmethod
    def validate_lowercase_choice(cls, v: str, info) -> str:
        choices = VALID_LOG_FORMATS if info.field_name == "log_format" else VALID_STATE_BACKENDS
        if v.lower() not in choices:
            raise ValueError(f"{info.field_name} must be one of: {', '.join(choices)}")
        return v.lower()

    @field_validator("sync_method")
    @classmethod
    def validate_sync_method(cls, v: str) -> str:
        if v in UNIMPLEMENTED_SYNC_METHODS:
            raise ValueError(f"sync method '{v}' is not implemented, use '{SYNC_METHOD_GROUPS}'")
        if v != SYNC_METHOD_GROUPS:
            raise ValueError(f"unknown sync method '{v}', use '{SYNC_METHOD_GROUPS}'")
        return v

    @field_validator("apply_order")
    @classmethod
    def validate_apply_order(cls, v: str) -> str:
        if v not in ("groups-first", "users-first"):
            raise ValueError("apply_order must be one of: groups-first, users-first")
        return v

    @field_validator("aws_scim_endpoint")
    @classmethod
    def validate_scim_endpoint(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith(("https://", "http://")):
            raise ValueError("aws_scim_endpoint must be an HTTP(S) URL")
        return v

    @model_validator(mode="after")
    def validate_required(self) -> "SyncSettings":
        """Credentials must be present unless they come from Secrets Manager."""
        missing = []
        if not self.use_secrets_manager:
            if not self.gws_service_account_file:
                missing.append("gws_service_account_file")
            if not self.gws_user_email:
                missing.append("gws_user_email")
            if not self.aws_scim_endpoint:
                missing.append("aws_scim_endpoint")
            if not self.aws_scim_access_token:
                missing.append("aws_scim_access_token")
        if self.state_backend == "s3" and not self.aws_s3_bucket_name:
            missing.append("aws_s3_bucket_name")
        if missing:
            raise ValueError(f"missing required settings: {', '.join(missing)}")
        return self

    @property
    def group_filters(self) -> List[str]:
        return _split_list(self.gws_groups_filter)

    @property
    def service_account_scopes(self) -> List[str]:
        return _split_list(self.gws_service_account_scopes)

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level


def load_settings(**overrides: Any) -> SyncSettings:
    """
    Load and validate settings.

    Args:
        **overrides: Values that win over every other source; None values are ignored

    Returns:
        SyncSettings: Validated settings

    Raises:
        ConfigurationError: If any setting is missing or invalid
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return SyncSettings(**values)
    except (ValidationError, SettingsError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"invalid configuration: {exc}") from exc
