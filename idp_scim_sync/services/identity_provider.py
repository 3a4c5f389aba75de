"""
Identity Provider

Turns raw directory records into fingerprinted identity entities: the
groups matching the configured filters, their members and the profiles of
every user referenced by those memberships.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..concurrency import DEFAULT_MAX_WORKERS, CancelToken, map_concurrently
from ..fingerprint import build_group_members, build_groups_members_result, build_groups_result, build_users_result
from ..models.identity import (
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
)
from .directory import IdentityDirectory


logger = logging.getLogger(__name__)

# Member types other than USER are skipped, derived membership already expands nested groups
USER_MEMBER_TYPE = "USER"


class IdentitySource(ABC):
    """The three fetch steps the reconciliation engine needs from the identity provider."""

    @abstractmethod
    def get_groups(self, filters: Sequence[str], token: Optional[CancelToken] = None) -> GroupsResult:
        ...

    @abstractmethod
    def get_groups_members(self, groups: GroupsResult, token: Optional[CancelToken] = None) -> GroupsMembersResult:
        ...

    @abstractmethod
    def get_users_by_groups_members(
        self, groups_members: GroupsMembersResult, token: Optional[CancelToken] = None
    ) -> UsersResult:
        ...


def group_from_directory(data: Dict[str, Any]) -> Group:
    return Group(ipid=data["id"], name=data.get("name") or data.get("email", ""), email=data.get("email"))


def member_from_directory(data: Dict[str, Any]) -> Member:
    return Member(ipid=data["id"], email=data.get("email"), status=data.get("status"))


def _first(items: Optional[List[Dict[str, Any]]], primary_key: str = "primary") -> Optional[Dict[str, Any]]:
    """The entry flagged primary, else the first one."""
    if not items:
        return None
    for item in items:
        if item.get(primary_key):
            return item
    return items[0]


def user_from_directory(data: Dict[str, Any]) -> User:
    """
    Map a Directory API user resource onto a User.

    The primary email becomes both the user name and the single primary
    work email. Address, phone and organization take the primary entry
    (or the first one); a relation of type manager becomes the enterprise
    manager reference.
    """
    primary_email = data["primaryEmail"]
    name_data = data.get("name") or {}

    name = None
    if name_data:
        name = Name(
            formatted=name_data.get("fullName"),
            family_name=name_data.get("familyName"),
            given_name=name_data.get("givenName"),
        )
    display_name = name_data.get("fullName") or " ".join(
        part for part in (name_data.get("givenName"), name_data.get("familyName")) if part
    ) or primary_email

    addresses = []
    address = _first(data.get("addresses"))
    if address:
        addresses.append(
            Address(
                formatted=address.get("formatted"),
                street_address=address.get("streetAddress"),
                locality=address.get("locality"),
                region=address.get("region"),
                postal_code=address.get("postalCode"),
                country=address.get("country"),
            )
        )

    phone_numbers = []
    phone = _first(data.get("phones"))
    if phone and phone.get("value"):
        phone_numbers.append(PhoneNumber(value=phone["value"], type=phone.get("type") or "work"))

    enterprise = None
    organization = _first(data.get("organizations"))
    manager_id = next(
        (relation.get("value") for relation in data.get("relations") or [] if relation.get("type") == "manager"),
        None,
    )
    employee_id = next(
        (ext.get("value") for ext in data.get("externalIds") or [] if ext.get("type") == "organization"),
        None,
    )
    if organization or manager_id or employee_id:
        organization = organization or {}
        enterprise = EnterpriseData(
            employee_number=employee_id,
            cost_center=organization.get("costCenter"),
            organization=organization.get("name"),
            division=organization.get("domain"),
            department=organization.get("department"),
            manager=Manager(value=manager_id) if manager_id else None,
        )

    language = _first(data.get("languages"), primary_key="preference")
    title = organization.get("title") if organization else None

    return User(
        ipid=data["id"],
        user_name=primary_email,
        display_name=display_name,
        title=title,
        preferred_language=language.get("languageCode") if language else None,
        profile_url=data.get("orgUnitPath"),
        emails=[Email(value=primary_email, type="work", primary=True)],
        addresses=addresses,
        phone_numbers=phone_numbers,
        name=name,
        enterprise_data=enterprise,
        active=not data.get("suspended", False),
    )


class IdentityProvider(IdentitySource):
    """
    IdentitySource backed by an IdentityDirectory.

    Member listings and user profiles are fetched concurrently with at most
    ``max_workers`` calls in flight; the first failure cancels the rest.
    """

    def __init__(self, directory: IdentityDirectory, max_workers: int = DEFAULT_MAX_WORKERS):
        self.directory = directory
        self.max_workers = max_workers

    def get_groups(self, filters: Sequence[str], token: Optional[CancelToken] = None) -> GroupsResult:
        """
        Union of the groups matching each filter expression.

        An empty filter list fetches every group. Groups are deduplicated by
        id; a second group carrying an already seen name is skipped with a
        warning since the target keys display names uniquely.
        """
        queries = [f for f in filters if f and f.strip()] or [None]

        groups: List[Group] = []
        seen_ids = set()
        seen_names = set()
        for query in queries:
            if token is not None:
                token.raise_if_cancelled("fetch")
            for data in self.directory.list_groups(query):
                group = group_from_directory(data)
                if group.ipid in seen_ids:
                    continue
                seen_ids.add(group.ipid)
                if group.name in seen_names:
                    logger.warning(f"Skipping group {group.ipid}: name {group.name!r} is already used by another group")
                    continue
                seen_names.add(group.name)
                groups.append(group)

        logger.info(f"Found {len(groups)} groups matching filters {list(filters)}")
        return build_groups_result(groups)

    def _group_members(self, group: Group) -> GroupMembers:
        members = []
        seen = set()
        for data in self.directory.list_group_members(group.ipid):
            if data.get("type", USER_MEMBER_TYPE) != USER_MEMBER_TYPE:
                continue
            member = member_from_directory(data)
            if member.ipid in seen:
                continue
            seen.add(member.ipid)
            members.append(member)
        return build_group_members(group, members)

    def get_groups_members(self, groups: GroupsResult, token: Optional[CancelToken] = None) -> GroupsMembersResult:
        groups_members = map_concurrently(self._group_members, groups.resources, self.max_workers, token)
        return build_groups_members_result(groups_members)

    def get_users_by_groups_members(
        self, groups_members: GroupsMembersResult, token: Optional[CancelToken] = None
    ) -> UsersResult:
        """Fetch the profile of every distinct member. Members whose profile is missing are left out."""
        member_ids: List[str] = []
        seen = set()
        for group_members in groups_members.resources:
            for member in group_members.resources:
                if member.ipid not in seen:
                    seen.add(member.ipid)
                    member_ids.append(member.ipid)

        profiles = map_concurrently(self.directory.get_user, member_ids, self.max_workers, token)
        users = [user_from_directory(profile) for profile in profiles if profile]
        logger.info(f"Fetched {len(users)} user profiles for {len(member_ids)} distinct members")
        return build_users_result(users)
