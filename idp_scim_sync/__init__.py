"""
IdP SCIM Sync

One-way reconciler that keeps a SCIM provisioning target's groups and users
consistent with a Google Workspace directory.
"""

__version__ = "0.1.0"
