"""
SCIM Client

Thin HTTP client for a SCIM 2.0 provisioning API (e.g. AWS IAM Identity
Center). Every call goes through the shared retry policy; callers only see
the final success or failure.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from tenacity import Retrying

from .. import __version__
from ..errors import SCIMHTTPError
from ..models.scim import SCIMError, SCIMGroup, SCIMListResponse, SCIMPatchRequest, SCIMUser
from .http_retry import (
    DEFAULT_BACKOFF_MAX,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT,
    build_retrying,
    send_request,
)


logger = logging.getLogger(__name__)

SCIM_CONTENT_TYPE = "application/scim+json"
DEFAULT_PAGE_SIZE = 100


def _scim_error_detail(response: requests.Response) -> Dict[str, Any]:
    """Extract detail and scimType from a SCIM error body, falling back to the raw text."""
    try:
        error = SCIMError.model_validate(response.json())
    except ValueError:
        return {"detail": response.text[:500] or None}
    return {"detail": error.detail, "scim_type": error.scimType}


class SCIMClient:
    """
    Client for the SCIM 2.0 Users and Groups endpoints.

    Example usage:
        client = SCIMClient("https://scim.us-east-1.amazonaws.com/abc/scim/v2", token)

        created = client.create_group(SCIMGroup(displayName="Admins", externalId="g-1"))
        client.patch_group(created.id, patch)
    """

    def __init__(
        self,
        base_url: str,
        bearer_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        page_size: int = DEFAULT_PAGE_SIZE,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: SCIM base URL, without a trailing /Users or /Groups
            bearer_token: Bearer token issued by the target
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per call for retryable failures
            backoff_max: Upper bound for one backoff sleep in seconds
            page_size: Resources requested per page when listing
            session: Optional pre-built session, mostly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {bearer_token}",
            "Content-Type": SCIM_CONTENT_TYPE,
            "Accept": SCIM_CONTENT_TYPE,
            "User-Agent": f"idp-scim-sync/{__version__}",
        })
        self._retrying: Retrying = build_retrying(max_attempts, backoff_max)

    def _request(self, method: str, path: str, **kwargs: Any) -> Optional[dict]:
        url = f"{self.base_url}{path}"
        logger.debug(f"SCIM {method} {url}")
        response = self._retrying(
            send_request,
            self.session,
            method,
            url,
            self.timeout,
            SCIMHTTPError,
            _scim_error_detail,
            **kwargs,
        )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _list(self, path: str, filter_expr: Optional[str] = None) -> List[dict]:
        resources: List[dict] = []
        start_index = 1
        while True:
            params: Dict[str, Any] = {"startIndex": start_index, "count": self.page_size}
            if filter_expr:
                params["filter"] = filter_expr
            page = SCIMListResponse.model_validate(self._request("GET", path, params=params) or {})
            resources.extend(page.Resources)
            start_index += len(page.Resources)
            if not page.Resources or len(resources) >= page.totalResults:
                return resources

    def list_users(self, filter_expr: Optional[str] = None) -> List[SCIMUser]:
        return [SCIMUser.model_validate(resource) for resource in self._list("/Users", filter_expr)]

    def list_groups(self, filter_expr: Optional[str] = None) -> List[SCIMGroup]:
        return [SCIMGroup.model_validate(resource) for resource in self._list("/Groups", filter_expr)]

    def create_user(self, user: SCIMUser) -> SCIMUser:
        return SCIMUser.model_validate(self._request("POST", "/Users", json=user.to_payload()))

    def replace_user(self, user_id: str, user: SCIMUser) -> SCIMUser:
        """Replace a user's attributes with PUT. Returns the stored resource."""
        payload = user.model_copy(update={"id": user_id}).to_payload()
        body = self._request("PUT", f"/Users/{user_id}", json=payload)
        return SCIMUser.model_validate(body) if body else user.model_copy(update={"id": user_id})

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/Users/{user_id}")

    def create_group(self, group: SCIMGroup) -> SCIMGroup:
        return SCIMGroup.model_validate(self._request("POST", "/Groups", json=group.to_payload()))

    def patch_group(self, group_id: str, patch: SCIMPatchRequest) -> None:
        self._request("PATCH", f"/Groups/{group_id}", json=patch.to_payload())

    def delete_group(self, group_id: str) -> None:
        self._request("DELETE", f"/Groups/{group_id}")
