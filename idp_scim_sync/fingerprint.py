"""
Fingerprinting

Deterministic content hashes for users, groups, memberships and the whole
snapshot. A fingerprint is a SHA-1 hex digest over a canonical JSON
encoding of the fields that come from the identity provider. Target
assigned ids and previously stored hash codes never take part, and list
valued fields are sorted first so construction order does not matter.

The ``build_*`` helpers return copies of the entities carrying their
``hash_code`` along with collection wrappers hashed the same way.
"""

import hashlib
import json
from typing import Any, Iterable, List

from .models.identity import (
    Group,
    GroupMembers,
    GroupsMembersResult,
    GroupsResult,
    Member,
    User,
    UsersResult,
)
from .models.state import State, StateResources


# Fields that are assigned by the target or derived from the content itself
_VOLATILE_FIELDS = {"scimid", "hash_code"}


def _digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def _semantic(entity) -> dict:
    return entity.model_dump(by_alias=True, exclude=_VOLATILE_FIELDS, exclude_none=True)


def _sorted_digests(values: Iterable[Any]) -> List[str]:
    return sorted(_digest(value) for value in values)


def fingerprint_group(group: Group) -> str:
    return _digest(_semantic(group))


def fingerprint_user(user: User) -> str:
    """Hash every user field except ``scimid`` and ``hash_code``. Multi-valued attributes are order-insensitive."""
    data = _semantic(user)
    for key in ("emails", "addresses", "phoneNumbers"):
        if key in data:
            data[key] = _sorted_digests(data[key])
    return _digest(data)


def fingerprint_member(member: Member) -> str:
    return _digest(_semantic(member))


def fingerprint_group_members(group_members: GroupMembers) -> str:
    """Hash the owning group's identity plus the sorted set of member fingerprints."""
    group = group_members.group
    payload = {
        "group": {"ipid": group.ipid, "name": group.name, "email": group.email},
        "members": sorted(fingerprint_member(member) for member in group_members.resources),
    }
    return _digest(payload)


def fingerprint_groups(groups: Iterable[Group]) -> str:
    return _digest(sorted(fingerprint_group(group) for group in groups))


def fingerprint_users(users: Iterable[User]) -> str:
    return _digest(sorted(fingerprint_user(user) for user in users))


def fingerprint_groups_members(groups_members: Iterable[GroupMembers]) -> str:
    return _digest(sorted(fingerprint_group_members(gm) for gm in groups_members))


def fingerprint_state(resources: StateResources) -> str:
    """Aggregate fingerprint of a snapshot, derived from its three collections."""
    return _digest(
        {
            "groups": fingerprint_groups(resources.groups.resources),
            "users": fingerprint_users(resources.users.resources),
            "groupsMembers": fingerprint_groups_members(resources.groups_members.resources),
        }
    )


def with_group_fingerprint(group: Group) -> Group:
    return group.model_copy(update={"hash_code": fingerprint_group(group)})


def with_user_fingerprint(user: User) -> User:
    return user.model_copy(update={"hash_code": fingerprint_user(user)})


def with_member_fingerprint(member: Member) -> Member:
    return member.model_copy(update={"hash_code": fingerprint_member(member)})


def build_group_members(group: Group, members: Iterable[Member]) -> GroupMembers:
    """Membership list for ``group`` with every member and the list itself fingerprinted. Member order is kept."""
    group_members = GroupMembers(
        group=with_group_fingerprint(group),
        resources=[with_member_fingerprint(member) for member in members],
    )
    group_members.hash_code = fingerprint_group_members(group_members)
    return group_members


def build_groups_result(groups: Iterable[Group]) -> GroupsResult:
    resources = [with_group_fingerprint(group) for group in groups]
    return GroupsResult(resources=resources, hash_code=fingerprint_groups(resources))


def build_users_result(users: Iterable[User]) -> UsersResult:
    resources = [with_user_fingerprint(user) for user in users]
    return UsersResult(resources=resources, hash_code=fingerprint_users(resources))


def build_groups_members_result(groups_members: Iterable[GroupMembers]) -> GroupsMembersResult:
    resources = [build_group_members(gm.group, gm.resources) for gm in groups_members]
    return GroupsMembersResult(resources=resources, hash_code=fingerprint_groups_members(resources))


def build_state(
    groups: GroupsResult,
    users: UsersResult,
    groups_members: GroupsMembersResult,
    code_version: str = "",
    last_sync: str = "",
) -> State:
    """Assemble a snapshot from fingerprinted collections and compute its top-level hash."""
    resources = StateResources(groups=groups, users=users, groups_members=groups_members)
    return State(
        code_version=code_version,
        last_sync=last_sync,
        hash_code=fingerprint_state(resources),
        resources=resources,
    )
