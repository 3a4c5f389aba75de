"""
Identity Models

Pydantic value objects for the entities being synchronized: users, groups,
group members and the collection wrappers stored in the state snapshot.
Field aliases match the persisted state format (camelCase).
"""

from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..errors import EntityValidationError


class IdentityModel(BaseModel):
    """Base for all identity entities: camelCase aliases, populate by field name."""

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Name(IdentityModel):
    formatted: Optional[str] = None
    family_name: Optional[str] = Field(None, alias="familyName")
    given_name: Optional[str] = Field(None, alias="givenName")
    middle_name: Optional[str] = Field(None, alias="middleName")
    honorific_prefix: Optional[str] = Field(None, alias="honorificPrefix")
    honorific_suffix: Optional[str] = Field(None, alias="honorificSuffix")


class Email(IdentityModel):
    value: str
    type: Optional[str] = "work"
    primary: bool = False


class Address(IdentityModel):
    formatted: Optional[str] = None
    street_address: Optional[str] = Field(None, alias="streetAddress")
    locality: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = Field(None, alias="postalCode")
    country: Optional[str] = None


class PhoneNumber(IdentityModel):
    value: str
    type: Optional[str] = "work"


class Manager(IdentityModel):
    value: Optional[str] = None  # Manager's IdP id
    ref: Optional[str] = Field(None, alias="$ref")


class EnterpriseData(IdentityModel):
    employee_number: Optional[str] = Field(None, alias="employeeNumber")
    cost_center: Optional[str] = Field(None, alias="costCenter")
    organization: Optional[str] = None
    division: Optional[str] = None
    department: Optional[str] = None
    manager: Optional[Manager] = None


class User(IdentityModel):
    """
    A directory user.

    ``scimid`` is assigned by the provisioning target and stays empty until
    the first successful create. ``hash_code`` is the content fingerprint.
    """

    ipid: str
    scimid: Optional[str] = None
    user_name: str = Field(alias="userName")
    display_name: Optional[str] = Field(None, alias="displayName")
    nick_name: Optional[str] = Field(None, alias="nickName")
    profile_url: Optional[str] = Field(None, alias="profileURL")
    title: Optional[str] = None
    user_type: Optional[str] = Field(None, alias="userType")
    preferred_language: Optional[str] = Field(None, alias="preferredLanguage")
    locale: Optional[str] = None
    timezone: Optional[str] = None
    emails: List[Email] = Field(default_factory=list)
    addresses: List[Address] = Field(default_factory=list)
    phone_numbers: List[PhoneNumber] = Field(default_factory=list, alias="phoneNumbers")
    name: Optional[Name] = None
    enterprise_data: Optional[EnterpriseData] = Field(None, alias="enterpriseData")
    active: bool = True
    hash_code: Optional[str] = Field(None, alias="hashCode")

    @property
    def primary_email(self) -> Optional[str]:
        for email in self.emails:
            if email.primary:
                return email.value
        return None


class Group(IdentityModel):
    ipid: str
    scimid: Optional[str] = None
    name: str
    email: Optional[str] = None
    hash_code: Optional[str] = Field(None, alias="hashCode")


class Member(IdentityModel):
    """A reference from a group to one of its users."""

    ipid: str
    scimid: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    hash_code: Optional[str] = Field(None, alias="hashCode")


class GroupMembers(IdentityModel):
    group: Group
    resources: List[Member] = Field(default_factory=list)
    hash_code: Optional[str] = Field(None, alias="hashCode")

    @computed_field
    @property
    def items(self) -> int:
        return len(self.resources)


class GroupsResult(IdentityModel):
    resources: List[Group] = Field(default_factory=list)
    hash_code: Optional[str] = Field(None, alias="hashCode")

    @computed_field
    @property
    def items(self) -> int:
        return len(self.resources)


class UsersResult(IdentityModel):
    resources: List[User] = Field(default_factory=list)
    hash_code: Optional[str] = Field(None, alias="hashCode")

    @computed_field
    @property
    def items(self) -> int:
        return len(self.resources)


class GroupsMembersResult(IdentityModel):
    resources: List[GroupMembers] = Field(default_factory=list)
    hash_code: Optional[str] = Field(None, alias="hashCode")

    @computed_field
    @property
    def items(self) -> int:
        return len(self.resources)


def _check_unique(ipids: Iterable[str], kind: str) -> None:
    seen = set()
    for ipid in ipids:
        if ipid in seen:
            raise EntityValidationError(f"duplicate {kind} ipid: {ipid}")
        seen.add(ipid)


def validate_user(user: User) -> None:
    """
    Check a user's invariants.

    Raises:
        EntityValidationError: If the ipid or user name is empty, or the user
            does not have exactly one primary email
    """
    if not user.ipid:
        raise EntityValidationError("user ipid cannot be empty")
    if not user.user_name:
        raise EntityValidationError(f"user {user.ipid} has an empty user name")
    primaries = [email for email in user.emails if email.primary]
    if len(primaries) != 1:
        raise EntityValidationError(
            f"user {user.ipid} must have exactly one primary email, found {len(primaries)}"
        )


def validate_group(group: Group) -> None:
    if not group.ipid:
        raise EntityValidationError("group ipid cannot be empty")
    if not group.name:
        raise EntityValidationError(f"group {group.ipid} has an empty name")


def validate_group_members(group_members: GroupMembers, user_ipids: Optional[set] = None) -> None:
    """
    Check a group's membership list.

    Args:
        group_members: Membership list to check
        user_ipids: When given, every member must reference one of these users

    Raises:
        EntityValidationError: On an invalid group, duplicate or unknown members
    """
    validate_group(group_members.group)
    _check_unique((member.ipid for member in group_members.resources), f"member of group {group_members.group.ipid}")
    for member in group_members.resources:
        if not member.ipid:
            raise EntityValidationError(f"group {group_members.group.ipid} has a member with an empty ipid")
        if user_ipids is not None and member.ipid not in user_ipids:
            raise EntityValidationError(
                f"member {member.ipid} of group {group_members.group.ipid} is not in the users collection"
            )


def validate_snapshot(groups: GroupsResult, users: UsersResult, groups_members: GroupsMembersResult) -> None:
    """
    Check the invariants of a full snapshot: valid entities, unique ipids and
    members that are a subset of the users collection.

    Raises:
        EntityValidationError: On the first violation found
    """
    for group in groups.resources:
        validate_group(group)
    _check_unique((group.ipid for group in groups.resources), "group")

    for user in users.resources:
        validate_user(user)
    _check_unique((user.ipid for user in users.resources), "user")

    user_ipids = {user.ipid for user in users.resources}
    for group_members in groups_members.resources:
        validate_group_members(group_members, user_ipids)
    _check_unique((gm.group.ipid for gm in groups_members.resources), "group members")
