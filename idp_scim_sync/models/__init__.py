"""
Models Package

Pydantic models for the synchronized identity entities, the state snapshot
and the SCIM 2.0 wire format.
"""

from .identity import (
    Address,
    Email,
    EnterpriseData,
    Group,
    GroupMembers,
    GroupsMembersResult,
    GroupsResult,
    Manager,
    Member,
    Name,
    PhoneNumber,
    User,
    UsersResult,
    validate_group,
    validate_group_members,
    validate_snapshot,
    validate_user,
)
from .scim import (
    SCIMEnterpriseUser,
    SCIMError,
    SCIMGroup,
    SCIMGroupMember,
    SCIMListResponse,
    SCIMPatchOperation,
    SCIMPatchRequest,
    SCIMUser,
    SCIM_GROUP_SCHEMA,
    SCIM_PATCH_SCHEMA,
    SCIM_USER_SCHEMA,
)
from .state import STATE_SCHEMA_VERSION, State, StateResources

__all__ = [
    "Address",
    "Email",
    "EnterpriseData",
    "Group",
    "GroupMembers",
    "GroupsMembersResult",
    "GroupsResult",
    "Manager",
    "Member",
    "Name",
    "PhoneNumber",
    "User",
    "UsersResult",
    "validate_group",
    "validate_group_members",
    "validate_snapshot",
    "validate_user",
    "SCIMEnterpriseUser",
    "SCIMError",
    "SCIMGroup",
    "SCIMGroupMember",
    "SCIMListResponse",
    "SCIMPatchOperation",
    "SCIMPatchRequest",
    "SCIMUser",
    "SCIM_GROUP_SCHEMA",
    "SCIM_PATCH_SCHEMA",
    "SCIM_USER_SCHEMA",
    "STATE_SCHEMA_VERSION",
    "State",
    "StateResources",
]
