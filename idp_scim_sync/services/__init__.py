"""
IdP SCIM Sync Services

Directory and SCIM adapters, state repositories, the operation batcher and
the reconciliation engine.
"""

from .batcher import MAX_PATCH_GROUP_MEMBERS_PER_REQUEST, PatchGroupRequest, patch_group_operations
from .directory import GoogleDirectoryClient, IdentityDirectory
from .identity_provider import IdentityProvider, IdentitySource
from .provisioning import ProvisioningTarget, SCIMProvider
from .reconciler import SyncOptions, SyncPlan, SyncReport, SyncService
from .scim_client import SCIMClient
from .secrets import SecretsManagerResolver
from .state_repository import DiskStateRepository, S3StateRepository, StateRepository

__all__ = [
    "MAX_PATCH_GROUP_MEMBERS_PER_REQUEST",
    "PatchGroupRequest",
    "patch_group_operations",
    "GoogleDirectoryClient",
    "IdentityDirectory",
    "IdentityProvider",
    "IdentitySource",
    "ProvisioningTarget",
    "SCIMProvider",
    "SyncOptions",
    "SyncPlan",
    "SyncReport",
    "SyncService",
    "SCIMClient",
    "SecretsManagerResolver",
    "DiskStateRepository",
    "S3StateRepository",
    "StateRepository",
]
