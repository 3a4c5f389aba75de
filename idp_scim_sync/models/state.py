"""
State Snapshot Model

The persisted record of what the last successful run applied to the
provisioning target. It is always read and written as a whole document.
"""

import json
from typing import Union

from pydantic import Field

from .identity import GroupsMembersResult, GroupsResult, IdentityModel, UsersResult


STATE_SCHEMA_VERSION = "1.0.0"


class StateResources(IdentityModel):
    groups: GroupsResult = Field(default_factory=GroupsResult)
    users: UsersResult = Field(default_factory=UsersResult)
    groups_members: GroupsMembersResult = Field(default_factory=GroupsMembersResult, alias="groupsMembers")


class State(IdentityModel):
    """
    Snapshot of the groups, users and group memberships last reconciled.

    A state with an empty ``last_sync`` has never been persisted by a
    successful run and is treated as the first-run state.
    """

    schema_version: str = Field(STATE_SCHEMA_VERSION, alias="schemaVersion")
    code_version: str = Field("", alias="codeVersion")
    last_sync: str = Field("", alias="lastSync")
    hash_code: str = Field("", alias="hashCode")
    resources: StateResources = Field(default_factory=StateResources)

    @property
    def is_first_sync(self) -> bool:
        return not self.last_sync

    @property
    def groups(self) -> GroupsResult:
        return self.resources.groups

    @property
    def users(self) -> UsersResult:
        return self.resources.users

    @property
    def groups_members(self) -> GroupsMembersResult:
        return self.resources.groups_members

    def to_json(self) -> str:
        """Serialize to the stored JSON document (2-space indent, camelCase keys)."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "State":
        """
        Parse a stored JSON document.

        Raises:
            pydantic.ValidationError: If the document does not match the model
        """
        return cls.model_validate_json(data)
