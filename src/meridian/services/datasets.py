"""
Dataset Service - Dataset storage and access control on top of the vault.

Datasets are written under DWN_SCHEMAS["dataset"] with their content and
a SHA-256 hash of it. Access grants delegate to PermissionManager.
"""

import base64
import binascii
import hashlib
import logging
from typing import Optional

from meridian.errors import ErrorCode, GatewayError
from meridian.models.dataset import (
    MAX_FILE_SIZE,
    DatasetFilter,
    DatasetMetadata,
    DatasetRecord,
)
from meridian.models.identity import DWN_SCHEMAS, QueryFilter
from meridian.models.permission import (
    DEFAULT_TEMPORARY_ACCESS_MINUTES,
    PermissionGrant,
    PermissionRevocation,
    PermissionScope,
)
from meridian.services.identity import IdentityVaultService
from meridian.services.permissions import PermissionManager
from meridian.utils import iso_from_ms

logger = logging.getLogger(__name__)


class DatasetService:
    """Upload, list and share datasets owned by the active identity."""

    def __init__(self, vault: IdentityVaultService, permissions: PermissionManager):
        self.vault = vault
        self.permissions = permissions

    async def upload_dataset(self, content: bytes | str, metadata: DatasetMetadata) -> DatasetRecord:
        """Validate, hash and store a dataset. Returns the stored record."""
        provider_did = self.vault.get_did()
        if provider_did is None:
            raise GatewayError(ErrorCode.NOT_CONNECTED)

        raw = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        if len(raw) > MAX_FILE_SIZE:
            raise GatewayError(
                ErrorCode.VALIDATION_ERROR,
                f"File size exceeds maximum of {MAX_FILE_SIZE // (1024 * 1024)}MB",
            )
        try:
            metadata.validate()
        except ValueError as e:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, str(e), e) from e

        record = DatasetRecord(
            id="",
            name=metadata.name,
            description=metadata.description,
            category=metadata.category,
            tags=list(metadata.tags),
            file_hash=hashlib.sha256(raw).hexdigest(),
            file_size=len(raw),
            file_type=metadata.file_type,
            upload_date=iso_from_ms(self.vault.now()),
            provider_did=provider_did,
            quality_score=metadata.quality_score,
            suggested_price=metadata.suggested_price,
        )
        payload = record.to_payload(content=_encode_content(raw))
        if not _is_text(raw):
            payload["contentEncoding"] = "base64"

        record.id = await self.vault.write(payload, DWN_SCHEMAS["dataset"])
        logger.info(f"Dataset uploaded: {record.id} ({record.file_size} bytes)")
        return record

    async def get_dataset(self, record_id: str) -> DatasetRecord:
        record = await self.vault.read_record(record_id)
        try:
            return DatasetRecord.from_payload(record.id, record.payload)
        except ValueError as e:
            raise GatewayError(ErrorCode.DWN_READ_FAILED, f"Record {record_id} is not a dataset", e) from e

    async def get_dataset_content(self, record_id: str) -> bytes:
        """Raw dataset bytes, verified against the stored hash."""
        record = await self.vault.read_record(record_id)
        payload = record.payload if isinstance(record.payload, dict) else {}
        content = payload.get("content")
        if content is None:
            raise GatewayError(ErrorCode.DWN_READ_FAILED, f"Dataset {record_id} has no content")
        try:
            if payload.get("contentEncoding") == "base64":
                raw = base64.b64decode(content, validate=True)
            else:
                raw = content.encode("utf-8")
        except (binascii.Error, ValueError, AttributeError, TypeError) as e:
            raise GatewayError(ErrorCode.DWN_READ_FAILED, f"Dataset {record_id} content is not decodable", e) from e
        if hashlib.sha256(raw).hexdigest() != payload.get("fileHash"):
            raise GatewayError(ErrorCode.DWN_READ_FAILED, f"Dataset {record_id} failed hash verification")
        return raw

    async def list_datasets(self, dataset_filter: Optional[DatasetFilter] = None) -> list[DatasetRecord]:
        datasets = []
        for record in await self.vault.query(QueryFilter(schema=DWN_SCHEMAS["dataset"])):
            try:
                datasets.append(DatasetRecord.from_payload(record.id, record.payload))
            except ValueError as e:
                logger.warning(f"Skipping malformed dataset {record.id}: {e}")
        if dataset_filter:
            datasets = [d for d in datasets if dataset_filter.matches(d)]
        return datasets

    async def delete_dataset(self, record_id: str) -> None:
        await self.vault.delete(record_id)
        logger.info(f"Dataset deleted: {record_id}")

    # ============================================
    # Access control
    # ============================================

    async def grant_dataset_access(self, record_id: str, buyer_did: str,
                                   duration_minutes: Optional[float] = None) -> PermissionGrant:
        """Read access for a buyer, open-ended unless a duration is given."""
        return await self.permissions.grant(
            buyer_did, record_id, PermissionScope(), ttl_minutes=duration_minutes
        )

    async def grant_temporary_access(self, record_id: str, target_did: str,
                                     duration_minutes: float = DEFAULT_TEMPORARY_ACCESS_MINUTES) -> PermissionGrant:
        return await self.permissions.grant_temporary_access(record_id, target_did, duration_minutes)

    async def revoke_dataset_access(self, record_id: str, buyer_did: str) -> PermissionRevocation:
        return await self.permissions.revoke(buyer_did, record_id)

    async def check_access(self, record_id: str, did: str) -> bool:
        return await self.permissions.check(record_id, did)


def _is_text(raw: bytes) -> bool:
    try:
        raw.decode("utf-8")
        return True
    except UnicodeDecodeError:
        return False


def _encode_content(raw: bytes) -> str:
    if _is_text(raw):
        return raw.decode("utf-8")
    return base64.b64encode(raw).decode("ascii")
