"""
Identity Vault Service - Decentralized identity and personal vault access.

Two modes behind one interface:
- live: Ed25519-backed did:dht identity, records sent to a DWN via VaultTransport
- fallback: did:local identity, records kept in the local KeyValueStore

Network-class failures while creating or reconnecting an identity switch
the service to fallback mode instead of raising. Once in fallback the
mode is sticky (persisted flag) until reset() is called explicitly.

States:
    UNINITIALIZED -> CONNECTING -> {LIVE, FALLBACK} -> DISCONNECTED
"""

import copy
import json
import logging
import secrets
import time
import uuid
from typing import Any, Callable, Optional

from meridian.errors import ErrorCode, GatewayError
from meridian.models.identity import (
    FALLBACK_DID_METHOD,
    Identity,
    IdentityMode,
    IdentityState,
    QueryFilter,
    VaultRecord,
    is_fallback_did,
)
from meridian.models.store import KeyValueStore, STORAGE_KEYS
from meridian.services.dwn import VaultTransport, build_did_document, document_endpoints
from meridian.utils import iso_from_ms, ms_from_iso, now_ms, truncate
from meridian.wallet.crypto import IdentityKey

logger = logging.getLogger(__name__)

RECORDS_PREFIX = STORAGE_KEYS["FALLBACK_RECORDS"]


class IdentityVaultService:
    """
    Owns the active identity and every vault read/write made with it.

    The identity private key is persisted in the store so a session can be
    reconnected; use an EncryptedFileStore to keep it sealed at rest.
    """

    def __init__(self, store: KeyValueStore,
                 transport: Optional[VaultTransport] = None,
                 vault_endpoints: Optional[list[str]] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.transport = transport
        self.vault_endpoints = list(vault_endpoints or [])
        self.clock = clock
        self._identity: Optional[Identity] = None
        self._key: Optional[IdentityKey] = None
        self._state = IdentityState.UNINITIALIZED
        self._fallback = bool(store.get(STORAGE_KEYS["FALLBACK_MODE"], False))

    # ============================================
    # Accessors
    # ============================================

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def state(self) -> IdentityState:
        return self._state

    def is_fallback(self) -> bool:
        return self._fallback

    def is_connected(self) -> bool:
        return self._identity is not None

    def get_did(self) -> Optional[str]:
        return self._identity.id if self._identity else None

    def now(self) -> int:
        """Current time in epoch ms, from the injected clock."""
        return now_ms(self.clock)

    # ============================================
    # Identity lifecycle
    # ============================================

    async def create_identity(self, vault_endpoints: Optional[list[str]] = None) -> str:
        """Create and publish a new identity. Returns its DID."""
        endpoints = list(vault_endpoints or self.vault_endpoints)
        self._state = IdentityState.CONNECTING

        if self._fallback:
            logger.info("Fallback mode is active for this session, creating local identity")
            return self._enter_fallback()
        if self.transport is None:
            logger.warning("No vault transport configured, using local fallback identity")
            return self._enter_fallback()

        key = IdentityKey.generate()
        try:
            await self.transport.publish_did(key, build_did_document(key, endpoints))
        except GatewayError as e:
            if e.is_network_class:
                logger.warning(f"Identity network unreachable ({e.code}), switching to fallback mode")
                return self._enter_fallback()
            self._state = IdentityState.UNINITIALIZED
            logger.error(f"Identity creation failed: {e.message}")
            raise GatewayError(ErrorCode.DID_CREATION_FAILED, cause=e) from e
        except Exception as e:
            self._state = IdentityState.UNINITIALIZED
            logger.error(f"Identity creation failed: {e}", exc_info=True)
            raise GatewayError(ErrorCode.DID_CREATION_FAILED, cause=e) from e

        self._key = key
        self._identity = Identity(id=key.did, mode=IdentityMode.LIVE, vault_endpoints=endpoints)
        self._state = IdentityState.LIVE
        self._persist_identity(key.did, key)
        logger.info(f"Created identity {truncate(key.did, 12, 6)}")
        return key.did

    async def connect_existing(self) -> str:
        """Reconnect with the stored identity. Returns its DID."""
        did = self.store.get(STORAGE_KEYS["IDENTITY_DID"])
        if not did:
            raise GatewayError(ErrorCode.IDENTITY_NOT_FOUND)
        self._state = IdentityState.CONNECTING

        if self._fallback or is_fallback_did(did):
            logger.info(f"Reconnecting fallback identity {truncate(did, 12, 6)}")
            return self._enter_fallback(did)

        key_hex = self.store.get(STORAGE_KEYS["IDENTITY_KEY"])
        if not key_hex:
            self._state = IdentityState.UNINITIALIZED
            raise GatewayError(ErrorCode.IDENTITY_NOT_FOUND, "Stored identity key is missing")
        try:
            key = IdentityKey.from_hex(key_hex)
        except ValueError as e:
            self._state = IdentityState.UNINITIALIZED
            raise GatewayError(ErrorCode.IDENTITY_NOT_FOUND, "Stored identity key is invalid", e) from e

        if self.transport is None:
            logger.warning("No vault transport configured, reconnecting in fallback mode")
            return self._enter_fallback(did)

        try:
            document = await self.transport.resolve_did(did)
        except GatewayError as e:
            if e.is_network_class:
                logger.warning(f"Could not resolve {truncate(did, 12, 6)} ({e.code}), reconnecting in fallback mode")
                return self._enter_fallback(did)
            self._state = IdentityState.UNINITIALIZED
            raise
        if document is None:
            self._state = IdentityState.UNINITIALIZED
            raise GatewayError(ErrorCode.IDENTITY_NOT_FOUND, f"Identity {did} is not published")

        self._key = key
        self._identity = Identity(
            id=did,
            mode=IdentityMode.LIVE,
            vault_endpoints=document_endpoints(document) or list(self.vault_endpoints),
        )
        self._state = IdentityState.LIVE
        self.store.set(STORAGE_KEYS["LAST_CONNECTION_TIME"], self.now())
        logger.info(f"Reconnected identity {truncate(did, 12, 6)}")
        return did

    def disconnect(self) -> None:
        """Drop the active identity. Fallback mode stays in effect."""
        self._identity = None
        self._key = None
        self._state = IdentityState.DISCONNECTED
        self.store.remove(STORAGE_KEYS["IDENTITY_DID"])
        self.store.remove(STORAGE_KEYS["IDENTITY_KEY"])
        self.store.remove(STORAGE_KEYS["LAST_CONNECTION_TIME"])
        logger.info("Identity disconnected")

    def reset(self, clear_records: bool = False) -> None:
        """Leave fallback mode. Optionally drop the local record table."""
        if self._identity is not None and self._identity.is_fallback:
            self._identity = None
            self._state = IdentityState.UNINITIALIZED
        self._fallback = False
        self.store.remove(STORAGE_KEYS["FALLBACK_MODE"])
        if clear_records:
            removed = self.store.remove_prefix(RECORDS_PREFIX)
            logger.info(f"Cleared {removed} local records")
        logger.info("Fallback mode reset")

    def export_fallback_data(self) -> dict:
        """Local identity and records, for migration into a live vault."""
        did = self.store.get(STORAGE_KEYS["IDENTITY_DID"])
        return {
            "did": did if did and is_fallback_did(did) else None,
            "records": [value for _, value in self.store.items(RECORDS_PREFIX)],
        }

    def _enter_fallback(self, did: Optional[str] = None) -> str:
        if did is None:
            did = f"did:{FALLBACK_DID_METHOD}:{self.now()}{secrets.token_hex(16)}"
        self._fallback = True
        self._key = None
        self._identity = Identity(id=did, mode=IdentityMode.FALLBACK)
        self._state = IdentityState.FALLBACK
        self.store.set(STORAGE_KEYS["FALLBACK_MODE"], True)
        self._persist_identity(did)
        return did

    def _persist_identity(self, did: str, key: Optional[IdentityKey] = None) -> None:
        self.store.set(STORAGE_KEYS["IDENTITY_DID"], did)
        if key is not None:
            self.store.set(STORAGE_KEYS["IDENTITY_KEY"], key.to_hex())
        self.store.set(STORAGE_KEYS["LAST_CONNECTION_TIME"], self.now())

    def _require_identity(self) -> Identity:
        if self._identity is None:
            raise GatewayError(ErrorCode.NOT_CONNECTED)
        return self._identity

    # ============================================
    # Vault operations
    # ============================================

    def _new_record_id(self) -> str:
        if self._identity.is_fallback:
            return f"local_{self.now()}_{secrets.token_hex(6)}"
        return f"rec_{uuid.uuid4().hex}"

    async def write(self, payload: Any, schema: str, published: bool = False) -> str:
        """Write a new record. Every call creates a new record id."""
        identity = self._require_identity()
        if not schema or not isinstance(schema, str):
            raise GatewayError(ErrorCode.VALIDATION_ERROR, "Record schema is required")
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, "Record payload must be JSON-serializable", e) from e

        record = VaultRecord(
            id=self._new_record_id(),
            schema=schema,
            payload=copy.deepcopy(payload),
            created_at=iso_from_ms(self.now()),
            published=published,
        )
        try:
            if identity.is_fallback:
                self.store.set(RECORDS_PREFIX + record.id, record.to_wire())
            else:
                await self.transport.write_record(self._key, identity.id, record)
        except Exception as e:
            logger.error(f"Vault write failed ({schema}): {e}")
            raise GatewayError(ErrorCode.DWN_WRITE_FAILED, cause=e) from e

        logger.debug(f"Wrote record {record.id} ({schema})")
        return record.id

    async def read_record(self, record_id: str) -> VaultRecord:
        """Read a full record (metadata and payload)."""
        identity = self._require_identity()
        try:
            if identity.is_fallback:
                data = self.store.get(RECORDS_PREFIX + record_id)
                record = VaultRecord.from_wire(data) if data is not None else None
            else:
                record = await self.transport.read_record(self._key, identity.id, record_id)
        except Exception as e:
            logger.error(f"Vault read failed for {record_id}: {e}")
            raise GatewayError(ErrorCode.DWN_READ_FAILED, cause=e) from e

        if record is None:
            raise GatewayError(ErrorCode.DWN_READ_FAILED, f"Record not found: {record_id}")
        return record

    async def read(self, record_id: str) -> Any:
        """Read a record's payload."""
        record = await self.read_record(record_id)
        return record.payload

    async def query(self, query: Optional[QueryFilter] = None) -> list[VaultRecord]:
        """Records matching the filter (insertion order in fallback mode)."""
        identity = self._require_identity()
        query = query or QueryFilter()
        for bound in (query.date_from, query.date_to):
            if bound:
                try:
                    ms_from_iso(bound)
                except (TypeError, ValueError, AttributeError) as e:
                    raise GatewayError(ErrorCode.VALIDATION_ERROR, f"Invalid date bound: {bound!r}", e) from e
        try:
            if identity.is_fallback:
                records = []
                for key, data in self.store.items(RECORDS_PREFIX):
                    try:
                        records.append(VaultRecord.from_wire(data))
                    except ValueError as e:
                        logger.warning(f"Skipping malformed local record {key}: {e}")
            else:
                records = await self.transport.query_records(self._key, identity.id, query)
        except Exception as e:
            logger.error(f"Vault query failed: {e}")
            raise GatewayError(ErrorCode.DWN_QUERY_FAILED, cause=e) from e

        return [r for r in records if query.matches(r)]

    async def delete(self, record_id: str) -> None:
        """Delete a record."""
        identity = self._require_identity()
        try:
            if identity.is_fallback:
                key = RECORDS_PREFIX + record_id
                existed = key in self.store
                if existed:
                    self.store.remove(key)
            else:
                existed = await self.transport.delete_record(self._key, identity.id, record_id)
        except Exception as e:
            logger.error(f"Vault delete failed for {record_id}: {e}")
            raise GatewayError(ErrorCode.DWN_DELETE_FAILED, cause=e) from e

        if not existed:
            raise GatewayError(ErrorCode.DWN_DELETE_FAILED, f"Record not found: {record_id}")
        logger.debug(f"Deleted record {record_id}")
