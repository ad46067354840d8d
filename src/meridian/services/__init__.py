"""
Services package - Backend services for Meridian.

Contains:
- IdentityVaultService: identity lifecycle and vault records (live/fallback)
- PermissionManager: record access grants and revocations
- DatasetService: dataset upload and sharing
- ContractClient: marketplace and license token operations
- HttpVaultTransport: DID gateway and DWN wire client
"""

from .dwn import VaultTransport, HttpVaultTransport
from .identity import IdentityVaultService
from .permissions import PermissionManager
from .datasets import DatasetService
from .contracts import ContractClient

__all__ = [
    "VaultTransport",
    "HttpVaultTransport",
    "IdentityVaultService",
    "PermissionManager",
    "DatasetService",
    "ContractClient",
]
