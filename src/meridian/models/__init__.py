"""
Models package - Data models for Meridian.

Contains:
- Identity, VaultRecord, QueryFilter: identity and vault records
- PermissionGrant, PermissionScope, PermissionRevocation: access control
- ChainSession, Listing, LicenseToken, TransactionReceipt: chain state
- DatasetRecord, DatasetMetadata, DatasetFilter: marketplace datasets
- KeyValueStore and backends: local persistence
"""

from .identity import (
    Identity,
    IdentityMode,
    IdentityState,
    VaultRecord,
    QueryFilter,
    DWN_SCHEMAS,
    DID_REGEX,
    is_valid_did,
    is_fallback_did,
)
from .permission import (
    PermissionScope,
    PermissionGrant,
    PermissionRevocation,
    DEFAULT_TEMPORARY_ACCESS_MINUTES,
)
from .chain import (
    ChainSession,
    NetworkInfo,
    Listing,
    LicenseToken,
    TransactionReceipt,
    PurchaseResult,
    TX_PENDING,
    TX_CONFIRMING,
    TX_SUCCESS,
    TX_FAILED,
)
from .dataset import DatasetRecord, DatasetMetadata, DatasetFilter
from .store import (
    KeyValueStore,
    MemoryStore,
    JsonFileStore,
    EncryptedFileStore,
    STORAGE_KEYS,
)

__all__ = [
    "Identity",
    "IdentityMode",
    "IdentityState",
    "VaultRecord",
    "QueryFilter",
    "DWN_SCHEMAS",
    "DID_REGEX",
    "is_valid_did",
    "is_fallback_did",
    "PermissionScope",
    "PermissionGrant",
    "PermissionRevocation",
    "DEFAULT_TEMPORARY_ACCESS_MINUTES",
    "ChainSession",
    "NetworkInfo",
    "Listing",
    "LicenseToken",
    "TransactionReceipt",
    "PurchaseResult",
    "TX_PENDING",
    "TX_CONFIRMING",
    "TX_SUCCESS",
    "TX_FAILED",
    "DatasetRecord",
    "DatasetMetadata",
    "DatasetFilter",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "EncryptedFileStore",
    "STORAGE_KEYS",
]
