"""
SCIM 2.0 Wire Models

Pydantic models for the SCIM 2.0 resources and messages (RFC 7643/7644)
exchanged with the provisioning target.
"""

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# SCIM 2.0 Schema URNs
SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
SCIM_ENTERPRISE_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
SCIM_LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class SCIMResource(BaseModel):
    """Base for SCIM resources. Unknown attributes from the server are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SCIMName(SCIMResource):
    formatted: Optional[str] = None
    familyName: Optional[str] = None
    givenName: Optional[str] = None
    middleName: Optional[str] = None
    honorificPrefix: Optional[str] = None
    honorificSuffix: Optional[str] = None


class SCIMEmail(SCIMResource):
    """SCIM email object"""
    value: str
    type: Optional[str] = "work"
    primary: Optional[bool] = None


class SCIMAddress(SCIMResource):
    formatted: Optional[str] = None
    streetAddress: Optional[str] = None
    locality: Optional[str] = None
    region: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None
    type: Optional[str] = "work"
    primary: Optional[bool] = None


class SCIMPhoneNumber(SCIMResource):
    value: str
    type: Optional[str] = "work"


class SCIMManager(SCIMResource):
    value: Optional[str] = None
    ref: Optional[str] = Field(None, alias="$ref")


class SCIMEnterpriseUser(SCIMResource):
    """Enterprise User schema extension attributes"""
    employeeNumber: Optional[str] = None
    costCenter: Optional[str] = None
    organization: Optional[str] = None
    division: Optional[str] = None
    department: Optional[str] = None
    manager: Optional[SCIMManager] = None


class SCIMUser(SCIMResource):
    """
    SCIM 2.0 User Resource

    ``externalId`` carries the identity provider's user id, ``id`` is
    assigned by the target on create.
    """
    schemas: List[str] = Field(default=[SCIM_USER_SCHEMA])
    id: Optional[str] = None
    externalId: Optional[str] = None
    userName: str
    displayName: Optional[str] = None
    nickName: Optional[str] = None
    profileUrl: Optional[str] = None
    title: Optional[str] = None
    userType: Optional[str] = None
    preferredLanguage: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None
    active: bool = True
    name: Optional[SCIMName] = None
    emails: Optional[List[SCIMEmail]] = None
    addresses: Optional[List[SCIMAddress]] = None
    phoneNumbers: Optional[List[SCIMPhoneNumber]] = None
    enterprise: Optional[SCIMEnterpriseUser] = Field(None, alias=SCIM_ENTERPRISE_USER_SCHEMA)


class SCIMGroupMember(SCIMResource):
    """SCIM group member reference"""
    value: str  # User ID on the target
    display: Optional[str] = None


class SCIMGroup(SCIMResource):
    """SCIM 2.0 Group Resource"""
    schemas: List[str] = Field(default=[SCIM_GROUP_SCHEMA])
    id: Optional[str] = None
    externalId: Optional[str] = None
    displayName: str
    members: Optional[List[SCIMGroupMember]] = None


class SCIMPatchOperation(SCIMResource):
    """
    SCIM PATCH operation

    Represents a single operation in a PATCH request (add, remove, replace).
    """
    op: str  # Operation: "add", "remove", "replace"
    path: Optional[str] = None  # Attribute path (e.g., "members")
    value: Optional[Any] = None  # Operation value


class SCIMPatchRequest(SCIMResource):
    """SCIM 2.0 PATCH Request envelope"""
    schemas: List[str] = Field(default=[SCIM_PATCH_SCHEMA])
    Operations: List[SCIMPatchOperation]


class SCIMListResponse(SCIMResource):
    """
    SCIM 2.0 List Response

    Resources are kept as raw dicts and parsed by the caller into the
    resource type it asked for.
    """
    schemas: List[str] = Field(default=[SCIM_LIST_RESPONSE_SCHEMA])
    totalResults: int = 0
    startIndex: int = 1
    itemsPerPage: int = 0
    Resources: List[dict] = Field(default_factory=list)


class SCIMError(SCIMResource):
    """
    SCIM 2.0 Error Response

    Standard error format for SCIM API responses.
    """
    schemas: List[str] = Field(default=[SCIM_ERROR_SCHEMA])
    status: Optional[Union[int, str]] = None  # HTTP status code, often sent as a string
    detail: Optional[str] = None
    scimType: Optional[str] = None
