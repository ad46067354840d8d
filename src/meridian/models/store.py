"""
Key-value stores - local persistence behind one small interface.

Backends:
- MemoryStore: process memory only (tests, throwaway sessions)
- JsonFileStore: one JSON document on disk, owner-only permissions
- EncryptedFileStore: same document sealed with Argon2id + AES-256-GCM

The store is shared by the identity service (fallback records), the
permission layer (grant records while in fallback) and session
restoration metadata. Keys are namespaced; there is no locking and the
last write to a key wins.
"""

import base64
import copy
import json
import logging
import secrets
from pathlib import Path
from typing import Any, Optional

from cryptography.exceptions import InvalidTag

from meridian.errors import ErrorCode, GatewayError
from meridian.wallet.crypto import (
    ARGON2_MEMORY_COST,
    ARGON2_TIME_COST,
    SALT_SIZE,
    decrypt_bytes,
    derive_key,
    encrypt_bytes,
    set_secure_permissions,
)

logger = logging.getLogger(__name__)


# Persisted state keys
STORAGE_KEYS = {
    "IDENTITY_DID": "meridian_web5_did",
    "IDENTITY_KEY": "meridian_identity_key",
    "WEB3_ADDRESS": "meridian_web3_address",
    "WEB3_CHAIN_ID": "meridian_web3_chain_id",
    "USER_TYPE": "meridian_user_type",
    "WALLET_CONNECTED": "meridian_wallet_connected",
    "LAST_CONNECTION_TIME": "meridian_last_connection_time",
    "FALLBACK_MODE": "meridian_mock_mode",
    "FALLBACK_RECORDS": "meridian_mock_dwn_records:",  # prefix, one key per record
}


class KeyValueStore:
    """Abstract base class for local persistence."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:
        """Keys starting with prefix, in insertion order."""
        raise NotImplementedError

    def items(self, prefix: str = "") -> list[tuple[str, Any]]:
        return [(key, self.get(key)) for key in self.keys(prefix)]

    def remove_prefix(self, prefix: str) -> int:
        """Remove every key under a prefix. Returns count removed."""
        keys = self.keys(prefix)
        for key in keys:
            self.remove(key)
        return len(keys)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryStore(KeyValueStore):
    """In-memory store. Values are deep-copied in and out."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        _ensure_json(key, value)
        # Re-insert so a rewrite moves to the end like a fresh write
        self._data.pop(key, None)
        self._data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]


class JsonFileStore(MemoryStore):
    """Store persisted as a single JSON document, rewritten on every change."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        super().__init__()
        self._load()

    def _read_document(self) -> Optional[dict]:
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_document(self, data: dict) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _load(self) -> None:
        """Load store contents from disk."""
        if not self.path.exists():
            return
        try:
            data = self._read_document()
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load store {self.path}: {e}")
            return
        if isinstance(data, dict):
            self._data = data

    def _save(self) -> None:
        """Save store contents to disk."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write_document(self._data)
        except OSError as e:
            raise GatewayError(ErrorCode.STORAGE_ERROR, cause=e) from e
        set_secure_permissions(self.path)

    def _commit(self, previous: dict) -> None:
        """Persist the current contents, restoring previous if the write fails."""
        try:
            self._save()
        except GatewayError:
            self._data = previous
            raise

    def set(self, key: str, value: Any) -> None:
        previous = dict(self._data)
        super().set(key, value)
        self._commit(previous)

    def remove(self, key: str) -> None:
        if key in self._data:
            previous = dict(self._data)
            super().remove(key)
            self._commit(previous)

    def remove_prefix(self, prefix: str) -> int:
        keys = self.keys(prefix)
        if keys:
            previous = dict(self._data)
            for key in keys:
                del self._data[key]
            self._commit(previous)
        return len(keys)


class EncryptedFileStore(JsonFileStore):
    """
    JSON store sealed with a password.

    File layout:
        {"version": 1, "kdf": "argon2id", "salt": b64, "iv": b64, "data": b64}

    The key is derived once per instance. A wrong password or tampered
    file raises STORAGE_ERROR instead of silently starting empty.
    """

    VERSION = 1

    def __init__(self, path: Path | str, password: str,
                 time_cost: int = ARGON2_TIME_COST,
                 memory_cost: int = ARGON2_MEMORY_COST):
        self._password = password
        self._time_cost = time_cost
        self._memory_cost = memory_cost
        self._salt: Optional[bytes] = None
        self._key: Optional[bytes] = None
        super().__init__(path)
        if self._key is None:
            self._salt = secrets.token_bytes(SALT_SIZE)
            self._key = derive_key(password, self._salt, time_cost, memory_cost)

    def _read_document(self) -> Optional[dict]:
        with open(self.path, "r", encoding="utf-8") as f:
            envelope = json.load(f)
        if not isinstance(envelope, dict) or envelope.get("version") != self.VERSION:
            raise GatewayError(ErrorCode.STORAGE_ERROR, "Unsupported store format")
        try:
            self._salt = base64.b64decode(envelope["salt"])
            self._key = derive_key(self._password, self._salt, self._time_cost, self._memory_cost)
            plaintext = decrypt_bytes(
                base64.b64decode(envelope["iv"]),
                base64.b64decode(envelope["data"]),
                self._key,
            )
        except (InvalidTag, KeyError, ValueError) as e:
            raise GatewayError(ErrorCode.STORAGE_ERROR,
                               "Wrong password or corrupted store", e) from e
        return json.loads(plaintext.decode("utf-8"))

    def _write_document(self, data: dict) -> None:
        iv, sealed = encrypt_bytes(json.dumps(data).encode("utf-8"), self._key)
        envelope = {
            "version": self.VERSION,
            "kdf": "argon2id",
            "salt": base64.b64encode(self._salt).decode("ascii"),
            "iv": base64.b64encode(iv).decode("ascii"),
            "data": base64.b64encode(sealed).decode("ascii"),
        }
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(envelope, f)


def _ensure_json(key: str, value: Any) -> None:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        raise GatewayError(ErrorCode.VALIDATION_ERROR,
                           f"Value for '{key}' is not JSON-serializable", e) from e
