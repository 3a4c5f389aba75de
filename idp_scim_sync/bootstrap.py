"""
Bootstrap

Builds a ready-to-run SyncService from validated settings: resolves the
credentials, then wires the directory, SCIM and state repository adapters
into the engine. The engine itself only ever sees explicit arguments.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import SyncSettings
from .errors import ConfigurationError
from .services.directory import GoogleDirectoryClient
from .services.identity_provider import IdentityProvider
from .services.provisioning import SCIMProvider
from .services.reconciler import SyncOptions, SyncService
from .services.scim_client import SCIMClient
from .services.secrets import SecretsManagerResolver
from .services.state_repository import DiskStateRepository, S3StateRepository, StateRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    service_account_info: Dict[str, Any]
    user_email: str
    scim_endpoint: str
    scim_access_token: str


def _parse_service_account(raw: str, source: str) -> Dict[str, Any]:
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"service account from {source} is not valid JSON: {exc}") from exc


def resolve_credentials(settings: SyncSettings, resolver: Optional[SecretsManagerResolver] = None) -> Credentials:
    """
    Gather the directory and SCIM credentials from settings or Secrets Manager.

    Raises:
        ConfigurationError: If the service account material cannot be read
        SecretsError: If a secret cannot be retrieved
    """
    if settings.use_secrets_manager:
        resolver = resolver or SecretsManagerResolver()
        secrets = resolver.resolve({
            "service_account": settings.gws_service_account_file_secret_name,
            "user_email": settings.gws_user_email_secret_name,
            "scim_endpoint": settings.aws_scim_endpoint_secret_name,
            "scim_access_token": settings.aws_scim_access_token_secret_name,
        })
        return Credentials(
            service_account_info=_parse_service_account(secrets["service_account"], "Secrets Manager"),
            user_email=secrets["user_email"],
            scim_endpoint=secrets["scim_endpoint"],
            scim_access_token=secrets["scim_access_token"],
        )

    path = settings.gws_service_account_file
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot read service account file {path}: {exc}") from exc

    return Credentials(
        service_account_info=_parse_service_account(raw, str(path)),
        user_email=settings.gws_user_email,
        scim_endpoint=settings.aws_scim_endpoint,
        scim_access_token=settings.aws_scim_access_token,
    )


def build_state_repository(settings: SyncSettings) -> StateRepository:
    if settings.state_backend == "disk":
        return DiskStateRepository(str(settings.state_file))
    return S3StateRepository(settings.aws_s3_bucket_name, settings.aws_s3_bucket_key)


def build_sync_service(settings: SyncSettings, credentials: Optional[Credentials] = None) -> SyncService:
    """
    Wire adapters and engine for one run.

    Args:
        settings: Validated settings
        credentials: Pre-resolved credentials, resolved from settings when omitted

    Returns:
        SyncService ready to reconcile
    """
    credentials = credentials or resolve_credentials(settings)

    directory = GoogleDirectoryClient.from_service_account(
        credentials.service_account_info,
        credentials.user_email,
        scopes=settings.service_account_scopes or None,
        timeout=settings.http_timeout,
        max_attempts=settings.http_max_attempts,
    )
    scim_client = SCIMClient(
        credentials.scim_endpoint,
        credentials.scim_access_token,
        timeout=settings.http_timeout,
        max_attempts=settings.http_max_attempts,
    )
    options = SyncOptions(
        group_filters=tuple(settings.group_filters),
        apply_order=settings.apply_order,
        dry_run=settings.dry_run,
        max_workers=settings.max_workers,
    )
    logger.debug(f"Sync options: {options}")

    return SyncService(
        IdentityProvider(directory, max_workers=settings.max_workers),
        SCIMProvider(scim_client),
        build_state_repository(settings),
        options,
    )
