"""
Shared fixtures and fakes for the sync tests.

FakeTarget keeps groups, users and memberships in memory and records every
call so tests can assert on the operations a run issued.
"""

import itertools
from typing import Dict, List, Optional, Sequence, Set

import pytest

from idp_scim_sync.fingerprint import build_group_members, build_groups_members_result, build_groups_result, build_users_result
from idp_scim_sync.models.identity import Email, Group, GroupsMembersResult, GroupsResult, Member, User, UsersResult
from idp_scim_sync.services.batcher import PatchGroupRequest
from idp_scim_sync.services.identity_provider import IdentitySource
from idp_scim_sync.services.provisioning import ProvisioningTarget
from idp_scim_sync.services.state_repository import DiskStateRepository


def make_user(ipid: str, email: Optional[str] = None, **fields) -> User:
    email = email or f"{ipid}@example.com"
    return User(
        ipid=ipid,
        user_name=email,
        display_name=fields.pop("display_name", ipid.title()),
        emails=[Email(value=email, primary=True)],
        **fields,
    )


def make_group(ipid: str, name: Optional[str] = None, **fields) -> Group:
    return Group(ipid=ipid, name=name or ipid, email=f"{ipid}@groups.example.com", **fields)


class FakeIdentity(IdentitySource):
    """Identity source serving a fixed directory: groups and their member user ids."""

    def __init__(self, groups: Sequence[Group] = (), users: Sequence[User] = (), members: Dict[str, List[str]] = None):
        self.groups = list(groups)
        self.users = {user.ipid: user for user in users}
        self.members = members or {}

    def get_groups(self, filters, token=None) -> GroupsResult:
        return build_groups_result(self.groups)

    def get_groups_members(self, groups, token=None) -> GroupsMembersResult:
        return build_groups_members_result(
            build_group_members(
                group,
                [Member(ipid=uid, email=self.users[uid].primary_email, status="ACTIVE") for uid in self.members.get(group.ipid, [])],
            )
            for group in groups.resources
        )

    def get_users_by_groups_members(self, groups_members, token=None) -> UsersResult:
        wanted = []
        for gm in groups_members.resources:
            for member in gm.resources:
                if member.ipid not in wanted:
                    wanted.append(member.ipid)
        return build_users_result(self.users[uid] for uid in wanted)


class FakeTarget(ProvisioningTarget):
    """In-memory SCIM target recording each call as (operation, key)."""

    def __init__(self, fail_on: Optional[Set[str]] = None):
        self.groups: Dict[str, Group] = {}
        self.users: Dict[str, User] = {}
        self.members: Dict[str, Set[str]] = {}
        self.calls: List[tuple] = []
        self.fail_on = fail_on or set()
        self._ids = itertools.count(1)

    def _record(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if f"{op}:{key}" in self.fail_on:
            raise RuntimeError(f"{op} failed for {key}")

    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if not call[0].startswith("list")]

    def list_groups(self) -> List[Group]:
        self._record("list_groups", "*")
        return list(self.groups.values())

    def list_users(self) -> List[User]:
        self._record("list_users", "*")
        return list(self.users.values())

    def list_group_members(self, group: Group, users) -> List[str]:
        self._record("list_group_members", group.ipid)
        wanted = {user.scimid for user in users}
        return [uid for uid in self.members.get(group.scimid, set()) if uid in wanted]

    def create_group(self, group: Group) -> Group:
        self._record("create_group", group.ipid)
        created = group.model_copy(update={"scimid": f"g-{next(self._ids)}"})
        self.groups[created.scimid] = created
        self.members[created.scimid] = set()
        return created

    def update_group(self, group: Group) -> Group:
        self._record("update_group", group.ipid)
        self.groups[group.scimid] = group
        return group

    def delete_group(self, group: Group) -> None:
        self._record("delete_group", group.ipid)
        self.groups.pop(group.scimid, None)
        self.members.pop(group.scimid, None)

    def create_user(self, user: User) -> User:
        self._record("create_user", user.ipid)
        created = user.model_copy(update={"scimid": f"u-{next(self._ids)}"})
        self.users[created.scimid] = created
        return created

    def update_user(self, user: User) -> User:
        self._record("update_user", user.ipid)
        self.users[user.scimid] = user
        return user

    def delete_user(self, user: User) -> None:
        self._record("delete_user", user.ipid)
        self.users.pop(user.scimid, None)

    def patch_group(self, request: PatchGroupRequest) -> None:
        operation = request.patch.Operations[0]
        self._record(f"{operation.op}_members", request.group_id)
        ids = {value["value"] for value in request.values}
        if operation.op == "add":
            self.members.setdefault(request.group_id, set()).update(ids)
        else:
            self.members.setdefault(request.group_id, set()).difference_update(ids)

    def member_names(self, group_name: str) -> Set[str]:
        scimid = next(g.scimid for g in self.groups.values() if g.name == group_name)
        return {self.users[uid].user_name for uid in self.members.get(scimid, set())}


@pytest.fixture
def fake_target():
    return FakeTarget()


@pytest.fixture
def state_repository(tmp_path):
    return DiskStateRepository(str(tmp_path / "state.json"))


@pytest.fixture
def directory():
    """Two groups sharing one user."""
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    return FakeIdentity(
        groups=[make_group("admins", "Admins"), make_group("devs", "Developers")],
        users=[alice, bob, carol],
        members={"admins": ["alice", "bob"], "devs": ["bob", "carol"]},
    )
