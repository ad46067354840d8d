"""
Permission Manager - Scoped, time-bounded access to vault records.

Grants and revocations are both written as vault records:
- grants under DWN_SCHEMAS["permission"]
- revocations under DWN_SCHEMAS["revocation"], immutable markers that
  supersede every grant for the same (grantee, record) created at or
  before the revocation time

check() evaluates the current grant set against the wall clock on every
call. Nothing is cached.
"""

import logging
from typing import Optional

from meridian.errors import ErrorCode, GatewayError
from meridian.models.identity import DWN_SCHEMAS, QueryFilter, is_valid_did
from meridian.models.permission import (
    DEFAULT_TEMPORARY_ACCESS_MINUTES,
    PermissionGrant,
    PermissionRevocation,
    PermissionScope,
)
from meridian.services.identity import IdentityVaultService
from meridian.utils import truncate

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60_000


class PermissionManager:
    """Grants, revokes and checks record access for the active identity."""

    def __init__(self, vault: IdentityVaultService):
        self.vault = vault

    def _validate(self, target_did: str, record_id: str) -> None:
        if not is_valid_did(target_did):
            raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Invalid DID: {target_did!r}")
        if not record_id or not isinstance(record_id, str):
            raise GatewayError(ErrorCode.VALIDATION_ERROR, "Record id is required")

    async def grant(self, target_did: str, record_id: str,
                    scope: Optional[PermissionScope] = None,
                    ttl_minutes: Optional[float] = None) -> PermissionGrant:
        """
        Grant target_did access to record_id.

        Expiry is now + ttl_minutes when a TTL is given, else scope.expiry,
        else the grant is open-ended.
        """
        owner = self.vault.get_did()
        if owner is None:
            raise GatewayError(ErrorCode.NOT_CONNECTED)
        self._validate(target_did, record_id)

        scope = PermissionScope(**vars(scope)) if scope else PermissionScope()
        try:
            scope.validate()
        except ValueError as e:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, str(e), e) from e

        now = self.vault.now()
        if ttl_minutes is not None:
            if isinstance(ttl_minutes, bool) or not isinstance(ttl_minutes, (int, float)) or ttl_minutes <= 0:
                raise GatewayError(ErrorCode.VALIDATION_ERROR, "ttl_minutes must be a positive number")
            scope.expiry = now + int(ttl_minutes * MS_PER_MINUTE)
        if scope.expiry is not None and scope.expiry <= now:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, "Permission expiry must be in the future")

        grant = PermissionGrant(
            id="",
            granted_to=target_did,
            granted_by=owner,
            record_id=record_id,
            scope=scope,
            created_at=now,
        )
        try:
            grant.id = await self.vault.write(grant.to_payload(), DWN_SCHEMAS["permission"])
        except GatewayError as e:
            logger.error(f"Failed to grant access to {record_id}: {e.message}")
            raise GatewayError(ErrorCode.PERMISSION_GRANT_FAILED, cause=e) from e

        expiry_note = f" until {grant.expiry}" if grant.expiry else ""
        logger.info(f"Granted {scope.method} on {record_id} to {truncate(target_did, 12, 6)}{expiry_note}")
        return grant

    async def grant_temporary_access(self, record_id: str, target_did: str,
                                     minutes: float = DEFAULT_TEMPORARY_ACCESS_MINUTES) -> PermissionGrant:
        """Short-lived read access for analytics."""
        return await self.grant(target_did, record_id, PermissionScope(), ttl_minutes=minutes)

    async def revoke(self, target_did: str, record_id: str) -> PermissionRevocation:
        """Revoke every grant to target_did for record_id made so far."""
        owner = self.vault.get_did()
        if owner is None:
            raise GatewayError(ErrorCode.NOT_CONNECTED)
        self._validate(target_did, record_id)

        revocation = PermissionRevocation(
            id="",
            granted_to=target_did,
            record_id=record_id,
            revoked_by=owner,
            revoked_at=self.vault.now(),
        )
        try:
            revocation.id = await self.vault.write(revocation.to_payload(), DWN_SCHEMAS["revocation"])
        except GatewayError as e:
            logger.error(f"Failed to revoke access to {record_id}: {e.message}")
            raise GatewayError(ErrorCode.PERMISSION_REVOKE_FAILED, cause=e) from e

        logger.info(f"Revoked access on {record_id} for {truncate(target_did, 12, 6)}")
        return revocation

    async def _load_revocations(self) -> list[PermissionRevocation]:
        revocations = []
        for record in await self.vault.query(QueryFilter(schema=DWN_SCHEMAS["revocation"])):
            try:
                revocations.append(PermissionRevocation.from_payload(record.id, record.payload))
            except ValueError as e:
                logger.warning(f"Skipping malformed revocation {record.id}: {e}")
        return revocations

    async def list(self) -> list[PermissionGrant]:
        """All grants visible to the active identity, with revoked state set."""
        grants = []
        for record in await self.vault.query(QueryFilter(schema=DWN_SCHEMAS["permission"])):
            try:
                grants.append(PermissionGrant.from_payload(record.id, record.payload))
            except ValueError as e:
                logger.warning(f"Skipping malformed grant {record.id}: {e}")

        revocations = await self._load_revocations()
        for grant in grants:
            grant.revoked = any(r.supersedes(grant) for r in revocations)
        return grants

    async def check(self, record_id: str, did: str) -> bool:
        """True if did currently holds an unrevoked, unexpired grant for record_id."""
        try:
            grants = await self.list()
        except GatewayError as e:
            logger.warning(f"Permission lookup failed, denying access to {record_id}: {e.message}")
            return False

        now = self.vault.now()
        return any(
            g.granted_to == did and g.record_id == record_id and g.is_active(now)
            for g in grants
        )
