"""
Provisioning Target

Interface the reconciliation engine uses to change the provisioning side,
plus the SCIM implementation that converts between identity entities and
SCIM resources.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..errors import EntityValidationError
from ..models.identity import Address, Email, EnterpriseData, Group, Manager, Name, PhoneNumber, User
from ..models.scim import (
    SCIM_ENTERPRISE_USER_SCHEMA,
    SCIM_USER_SCHEMA,
    SCIMAddress,
    SCIMEmail,
    SCIMEnterpriseUser,
    SCIMGroup,
    SCIMManager,
    SCIMName,
    SCIMPatchOperation,
    SCIMPatchRequest,
    SCIMPhoneNumber,
    SCIMUser,
)
from .batcher import PatchGroupRequest
from .scim_client import SCIMClient


logger = logging.getLogger(__name__)


class ProvisioningTarget(ABC):
    """Create, replace, patch, delete and list groups and users on the target."""

    @abstractmethod
    def list_groups(self) -> List[Group]:
        """Groups present on the target, with ``scimid`` set and ``ipid`` taken from externalId."""

    @abstractmethod
    def list_users(self) -> List[User]:
        """Users present on the target, with ``scimid`` set and ``ipid`` taken from externalId."""

    @abstractmethod
    def list_group_members(self, group: Group, users: Sequence[User]) -> List[str]:
        """SCIM ids of the given target users that are members of ``group``."""

    @abstractmethod
    def create_group(self, group: Group) -> Group:
        """Create the group and return it carrying the assigned ``scimid``."""

    @abstractmethod
    def update_group(self, group: Group) -> Group:
        """Replace the content of the group identified by ``group.scimid``."""

    @abstractmethod
    def delete_group(self, group: Group) -> None:
        ...

    @abstractmethod
    def create_user(self, user: User) -> User:
        """Create the user and return it carrying the assigned ``scimid``."""

    @abstractmethod
    def update_user(self, user: User) -> User:
        """Replace the content of the user identified by ``user.scimid``."""

    @abstractmethod
    def delete_user(self, user: User) -> None:
        ...

    @abstractmethod
    def patch_group(self, request: PatchGroupRequest) -> None:
        """Send one membership PATCH built by the operation batcher."""


def user_to_scim(user: User) -> SCIMUser:
    """Convert an identity user into a SCIM User resource (core and enterprise schemas)."""
    enterprise = None
    if user.enterprise_data is not None:
        data = user.enterprise_data
        manager = None
        if data.manager is not None and data.manager.value:
            manager = SCIMManager(value=data.manager.value, ref=data.manager.ref)
        enterprise = SCIMEnterpriseUser(
            employeeNumber=data.employee_number,
            costCenter=data.cost_center,
            organization=data.organization,
            division=data.division,
            department=data.department,
            manager=manager,
        )

    name = None
    if user.name is not None:
        name = SCIMName(
            formatted=user.name.formatted,
            familyName=user.name.family_name,
            givenName=user.name.given_name,
            middleName=user.name.middle_name,
            honorificPrefix=user.name.honorific_prefix,
            honorificSuffix=user.name.honorific_suffix,
        )

    schemas = [SCIM_USER_SCHEMA]
    if enterprise is not None:
        schemas.append(SCIM_ENTERPRISE_USER_SCHEMA)

    return SCIMUser(
        schemas=schemas,
        id=user.scimid,
        externalId=user.ipid,
        userName=user.user_name,
        displayName=user.display_name,
        nickName=user.nick_name,
        profileUrl=user.profile_url,
        title=user.title,
        userType=user.user_type,
        preferredLanguage=user.preferred_language,
        locale=user.locale,
        timezone=user.timezone,
        active=user.active,
        name=name,
        emails=[SCIMEmail(value=e.value, type=e.type, primary=e.primary) for e in user.emails] or None,
        addresses=[
            SCIMAddress(
                formatted=a.formatted,
                streetAddress=a.street_address,
                locality=a.locality,
                region=a.region,
                postalCode=a.postal_code,
                country=a.country,
            )
            for a in user.addresses
        ] or None,
        phoneNumbers=[SCIMPhoneNumber(value=p.value, type=p.type) for p in user.phone_numbers] or None,
        enterprise=enterprise,
    )


def user_from_scim(resource: SCIMUser) -> User:
    enterprise = None
    if resource.enterprise is not None:
        ext = resource.enterprise
        enterprise = EnterpriseData(
            employee_number=ext.employeeNumber,
            cost_center=ext.costCenter,
            organization=ext.organization,
            division=ext.division,
            department=ext.department,
            manager=Manager(value=ext.manager.value, ref=ext.manager.ref) if ext.manager else None,
        )

    name = None
    if resource.name is not None:
        name = Name(
            formatted=resource.name.formatted,
            family_name=resource.name.familyName,
            given_name=resource.name.givenName,
            middle_name=resource.name.middleName,
            honorific_prefix=resource.name.honorificPrefix,
            honorific_suffix=resource.name.honorificSuffix,
        )

    return User(
        ipid=resource.externalId or "",
        scimid=resource.id,
        user_name=resource.userName,
        display_name=resource.displayName,
        nick_name=resource.nickName,
        profile_url=resource.profileUrl,
        title=resource.title,
        user_type=resource.userType,
        preferred_language=resource.preferredLanguage,
        locale=resource.locale,
        timezone=resource.timezone,
        active=resource.active,
        name=name,
        emails=[Email(value=e.value, type=e.type, primary=bool(e.primary)) for e in resource.emails or []],
        addresses=[
            Address(
                formatted=a.formatted,
                street_address=a.streetAddress,
                locality=a.locality,
                region=a.region,
                postal_code=a.postalCode,
                country=a.country,
            )
            for a in resource.addresses or []
        ],
        phone_numbers=[PhoneNumber(value=p.value, type=p.type) for p in resource.phoneNumbers or []],
        enterprise_data=enterprise,
    )


def group_to_scim(group: Group) -> SCIMGroup:
    return SCIMGroup(id=group.scimid, externalId=group.ipid, displayName=group.name)


def group_from_scim(resource: SCIMGroup) -> Group:
    return Group(ipid=resource.externalId or "", scimid=resource.id, name=resource.displayName)


class SCIMProvider(ProvisioningTarget):
    """
    ProvisioningTarget backed by a SCIM 2.0 API.

    Groups are updated with a PATCH replace of displayName and externalId
    since targets such as AWS IAM Identity Center do not accept PUT on
    groups. Users are replaced with PUT.
    """

    def __init__(self, client: SCIMClient):
        self.client = client

    def list_groups(self) -> List[Group]:
        return [group_from_scim(resource) for resource in self.client.list_groups()]

    def list_users(self) -> List[User]:
        return [user_from_scim(resource) for resource in self.client.list_users()]

    def list_group_members(self, group: Group, users: Sequence[User]) -> List[str]:
        """
        Check each user with a ``members eq`` filter on the group.

        Group resources are not relied on to carry ``members``, so membership
        is read one user at a time.
        """
        _require_scimid(group.scimid, f"group {group.ipid}")
        member_ids = []
        for user in users:
            if not user.scimid:
                continue
            expression = f'id eq "{group.scimid}" and members eq "{user.scimid}"'
            if self.client.list_groups(expression):
                member_ids.append(user.scimid)
        return member_ids

    def create_group(self, group: Group) -> Group:
        created = self.client.create_group(group_to_scim(group.model_copy(update={"scimid": None})))
        logger.debug(f"Created group {group.name} with id {created.id}")
        return group.model_copy(update={"scimid": created.id})

    def update_group(self, group: Group) -> Group:
        _require_scimid(group.scimid, f"group {group.ipid}")
        patch = SCIMPatchRequest(
            Operations=[
                SCIMPatchOperation(
                    op="replace",
                    value={"id": group.scimid, "externalId": group.ipid, "displayName": group.name},
                )
            ]
        )
        self.client.patch_group(group.scimid, patch)
        return group

    def delete_group(self, group: Group) -> None:
        _require_scimid(group.scimid, f"group {group.ipid}")
        self.client.delete_group(group.scimid)

    def create_user(self, user: User) -> User:
        created = self.client.create_user(user_to_scim(user.model_copy(update={"scimid": None})))
        logger.debug(f"Created user {user.user_name} with id {created.id}")
        return user.model_copy(update={"scimid": created.id})

    def update_user(self, user: User) -> User:
        _require_scimid(user.scimid, f"user {user.ipid}")
        stored = self.client.replace_user(user.scimid, user_to_scim(user))
        return user.model_copy(update={"scimid": stored.id or user.scimid})

    def delete_user(self, user: User) -> None:
        _require_scimid(user.scimid, f"user {user.ipid}")
        self.client.delete_user(user.scimid)

    def patch_group(self, request: PatchGroupRequest) -> None:
        self.client.patch_group(request.group_id, request.patch)


def _require_scimid(scimid: Optional[str], entity: str) -> None:
    if not scimid:
        raise EntityValidationError(f"{entity} has no SCIM id")
