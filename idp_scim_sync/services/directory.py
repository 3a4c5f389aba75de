"""
Identity Directory

Read-only access to the identity provider's directory. The Google
Workspace implementation calls the Admin SDK Directory API over REST with a
service account using domain-wide delegation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import google.auth.exceptions
import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account
from tenacity import Retrying

from ..errors import ConfigurationError, DirectoryError, TransportError
from .http_retry import (
    DEFAULT_BACKOFF_MAX,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT,
    build_retrying,
    send_request,
)


logger = logging.getLogger(__name__)

ADMIN_DIRECTORY_URL = "https://admin.googleapis.com/admin/directory/v1"

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.group.readonly",
    "https://www.googleapis.com/auth/admin.directory.group.member.readonly",
    "https://www.googleapis.com/auth/admin.directory.user.readonly",
]

# Partial responses, only what the identity provider maps
GROUP_FIELDS = "nextPageToken,groups(id,name,email)"
MEMBER_FIELDS = "nextPageToken,members(id,email,status,type)"
USER_FIELDS = (
    "id,primaryEmail,name,suspended,emails,addresses,phones,organizations,"
    "languages,relations,orgUnitPath,externalIds"
)


class IdentityDirectory(ABC):
    """Read-only queries against the identity provider directory."""

    @abstractmethod
    def list_groups(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        """Groups matching one query expression, or all groups when ``query`` is empty."""

    @abstractmethod
    def list_group_members(self, group_key: str) -> List[Dict[str, Any]]:
        """Direct and derived members of a group."""

    @abstractmethod
    def get_user(self, user_key: str) -> Optional[Dict[str, Any]]:
        """Full user profile, or None when the user does not exist."""


class GoogleDirectoryClient(IdentityDirectory):
    """
    Google Workspace Admin SDK Directory API client.

    Example usage:
        directory = GoogleDirectoryClient.from_service_account(
            service_account_info, user_email="admin@example.com"
        )
        groups = directory.list_groups("name:Admin*")
    """

    def __init__(
        self,
        session: requests.Session,
        customer: str = "my_customer",
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        base_url: str = ADMIN_DIRECTORY_URL,
    ):
        self.session = session
        self.customer = customer
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._retrying: Retrying = build_retrying(max_attempts, backoff_max)

    @classmethod
    def from_service_account(
        cls,
        service_account_info: Dict[str, Any],
        user_email: str,
        scopes: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> "GoogleDirectoryClient":
        """
        Build a client authorized as ``user_email`` through domain-wide delegation.

        Args:
            service_account_info: Parsed service account key file
            user_email: Workspace admin user to impersonate
            scopes: OAuth scopes, defaults to read-only directory scopes
            **kwargs: Passed to the constructor

        Raises:
            ConfigurationError: If the service account material is invalid
        """
        try:
            credentials = service_account.Credentials.from_service_account_info(
                service_account_info,
                scopes=list(scopes or DEFAULT_SCOPES),
                subject=user_email,
            )
        except (ValueError, KeyError) as exc:
            raise ConfigurationError(f"invalid service account credentials: {exc}") from exc
        return cls(AuthorizedSession(credentials), **kwargs)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._retrying(
                send_request,
                self.session,
                "GET",
                url,
                self.timeout,
                DirectoryError,
                params=params,
            )
        except google.auth.exceptions.TransportError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        except google.auth.exceptions.RefreshError as exc:
            raise DirectoryError(401, detail=f"token refresh failed: {exc}", method="GET", url=url) from exc
        return response.json()

    def _paginate(self, path: str, items_key: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        page_params = dict(params)
        while True:
            page = self._get(path, page_params)
            items.extend(page.get(items_key, []))
            token = page.get("nextPageToken")
            if not token:
                return items
            page_params["pageToken"] = token

    def list_groups(self, query: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"customer": self.customer, "fields": GROUP_FIELDS, "maxResults": 200}
        if query:
            params["query"] = query
        return self._paginate("/groups", "groups", params)

    def list_group_members(self, group_key: str) -> List[Dict[str, Any]]:
        params = {"fields": MEMBER_FIELDS, "includeDerivedMembership": "true", "maxResults": 200}
        return self._paginate(f"/groups/{group_key}/members", "members", params)

    def get_user(self, user_key: str) -> Optional[Dict[str, Any]]:
        try:
            return self._get(f"/users/{user_key}", {"fields": USER_FIELDS, "projection": "full"})
        except DirectoryError as exc:
            if exc.status_code == 404:
                logger.warning(f"User {user_key} not found in the directory")
                return None
            raise
