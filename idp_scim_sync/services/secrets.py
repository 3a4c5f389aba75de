"""
Secrets

Fetches the credentials the sync needs from AWS Secrets Manager. The
lookups are independent so they run concurrently and are joined before
setup continues.
"""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..concurrency import map_concurrently
from ..errors import SecretsError


logger = logging.getLogger(__name__)


class SecretsManagerResolver:
    """
    Resolve named secrets to their string values.

    Example usage:
        resolver = SecretsManagerResolver()
        values = resolver.resolve({"scim_token": "IDPSCIM_SCIMAccessToken"})
    """

    def __init__(self, client: Any = None, max_workers: int = 4):
        self.client = client or boto3.client("secretsmanager")
        self.max_workers = max_workers

    def get_secret(self, secret_id: str) -> str:
        """
        Read one secret string.

        Raises:
            SecretsError: If the secret cannot be read or has no string value
        """
        try:
            response = self.client.get_secret_value(SecretId=secret_id)
        except (ClientError, BotoCoreError) as exc:
            raise SecretsError(f"cannot read secret {secret_id}: {exc}") from exc

        value: Optional[str] = response.get("SecretString")
        if not value:
            raise SecretsError(f"secret {secret_id} has no string value")
        return value

    def resolve(self, secret_ids: Dict[str, str]) -> Dict[str, str]:
        """
        Read several secrets concurrently.

        Args:
            secret_ids: Mapping of result name to secret id

        Returns:
            Mapping of result name to secret value

        Raises:
            SecretsError: For the first secret that fails, the others are cancelled
        """
        names = list(secret_ids)
        values = map_concurrently(
            lambda name: self.get_secret(secret_ids[name]),
            names,
            max_workers=self.max_workers,
            phase="setup",
        )
        logger.info(f"Resolved {len(values)} secrets from Secrets Manager")
        return dict(zip(names, values))
