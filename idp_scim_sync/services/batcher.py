"""
Operation Batcher

Splits a group membership change into PATCH requests that respect the
provisioning API's per-request item limit.
"""

from dataclasses import dataclass
from typing import Any, List, Sequence

from ..models.scim import SCIMPatchOperation, SCIMPatchRequest


# Maximum member references the target accepts in one PATCH request
MAX_PATCH_GROUP_MEMBERS_PER_REQUEST = 100

PATCH_OPERATIONS = ("add", "remove", "replace")


@dataclass(frozen=True)
class PatchGroupRequest:
    """A self-contained PATCH addressed to one group."""

    group_id: str
    display_name: str
    patch: SCIMPatchRequest

    @property
    def values(self) -> List[Any]:
        return [value for operation in self.patch.Operations for value in (operation.value or [])]


def patch_group_operations(
    op: str,
    path: str,
    values: Sequence[Any],
    group_id: str,
    display_name: str,
    max_items: int = MAX_PATCH_GROUP_MEMBERS_PER_REQUEST,
) -> List[PatchGroupRequest]:
    """
    Build the PATCH requests for one semantic operation on a group.

    Produces ``ceil(len(values) / max_items)`` requests, each carrying at most
    ``max_items`` values in input order. Concatenating the values of
    the returned requests gives back ``values``. An empty ``values`` yields no
    requests.

    Args:
        op: PATCH operation, one of "add", "remove" or "replace"
        path: Attribute path the values apply to (e.g. "members")
        values: Ordered values to send
        group_id: Target id of the group every request is addressed to
        display_name: Group display name, kept for logging
        max_items: Maximum values per request

    Returns:
        List of PatchGroupRequest in send order

    Raises:
        ValueError: If ``op`` is not a PATCH operation or ``max_items`` < 1
    """
    if op not in PATCH_OPERATIONS:
        raise ValueError(f"op must be one of: {', '.join(PATCH_OPERATIONS)}")
    if max_items < 1:
        raise ValueError("max_items must be at least 1")

    requests = []
    for start in range(0, len(values), max_items):
        chunk = list(values[start:start + max_items])
        patch = SCIMPatchRequest(Operations=[SCIMPatchOperation(op=op, path=path, value=chunk)])
        requests.append(PatchGroupRequest(group_id=group_id, display_name=display_name, patch=patch))

    return requests
