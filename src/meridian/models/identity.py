"""
Identity and vault record models.

Wire shape of a vault record (live and fallback paths):
    {id, schema, dataFormat: "application/json", payload, createdAt: ISO8601, published}
"""

import re
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Optional

from meridian.utils import ms_from_iso

DID_REGEX = re.compile(r"^did:[a-z0-9]+:[a-zA-Z0-9._-]+$")

LIVE_DID_METHOD = "dht"
FALLBACK_DID_METHOD = "local"

DATA_FORMAT_JSON = "application/json"

# Schema URIs
SCHEMA_BASE = "https://meridian.io/schemas"
DWN_SCHEMAS = {
    "dataset": f"{SCHEMA_BASE}/dataset",
    "permission": f"{SCHEMA_BASE}/permission",
    "revocation": f"{SCHEMA_BASE}/permission-revocation",
    "metadata": f"{SCHEMA_BASE}/metadata",
}


class IdentityMode(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


class IdentityState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    LIVE = "live"
    FALLBACK = "fallback"
    DISCONNECTED = "disconnected"


def is_valid_did(value: str) -> bool:
    return isinstance(value, str) and bool(DID_REGEX.match(value))


def did_method(did: str) -> Optional[str]:
    """'did:dht:abc' -> 'dht'"""
    if not is_valid_did(did):
        return None
    return did.split(":", 2)[1]


def is_fallback_did(did: str) -> bool:
    return did_method(did) == FALLBACK_DID_METHOD


@dataclass
class Identity:
    """The active identity for a session."""
    id: str
    mode: IdentityMode
    vault_endpoints: list[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.mode == IdentityMode.FALLBACK


@dataclass
class VaultRecord:
    """A record in the personal vault."""
    id: str
    schema: str
    payload: Any
    created_at: str                      # ISO 8601
    data_format: str = DATA_FORMAT_JSON
    published: bool = False

    def to_wire(self) -> dict:
        """Serialize to the vault wire shape."""
        return {
            "id": self.id,
            "schema": self.schema,
            "dataFormat": self.data_format,
            "payload": self.payload,
            "createdAt": self.created_at,
            "published": self.published,
        }

    @classmethod
    def from_wire(cls, data: dict) -> "VaultRecord":
        """Parse the vault wire shape with input validation."""
        if not isinstance(data, dict):
            raise ValueError("Vault record must be an object")
        record_id = data.get("id")
        schema = data.get("schema")
        if not record_id or not isinstance(record_id, str):
            raise ValueError("Vault record is missing 'id'")
        if not schema or not isinstance(schema, str):
            raise ValueError("Vault record is missing 'schema'")
        return cls(
            id=record_id,
            schema=schema,
            payload=data.get("payload"),
            created_at=str(data.get("createdAt", "")),
            data_format=data.get("dataFormat", DATA_FORMAT_JSON),
            published=bool(data.get("published", False)),
        )

    @property
    def created_at_ms(self) -> int:
        return ms_from_iso(self.created_at)


@dataclass
class QueryFilter:
    """Vault query filter. Unset fields match everything."""
    schema: Optional[str] = None
    data_format: Optional[str] = None
    published: Optional[bool] = None
    date_from: Optional[str] = None   # ISO 8601, inclusive
    date_to: Optional[str] = None     # ISO 8601, inclusive

    def matches(self, record: VaultRecord) -> bool:
        if self.schema is not None and record.schema != self.schema:
            return False
        if self.data_format is not None and record.data_format != self.data_format:
            return False
        if self.published is not None and record.published != self.published:
            return False
        if self.date_from or self.date_to:
            try:
                created = record.created_at_ms
            except ValueError:
                return False
            if self.date_from and created < ms_from_iso(self.date_from):
                return False
            if self.date_to and created > ms_from_iso(self.date_to):
                return False
        return True

    def to_wire(self) -> dict:
        """Filter in DWN message form (unset fields omitted)."""
        wire: dict = {}
        if self.schema is not None:
            wire["schema"] = self.schema
        if self.data_format is not None:
            wire["dataFormat"] = self.data_format
        if self.published is not None:
            wire["published"] = self.published
        if self.date_from or self.date_to:
            wire["dateCreated"] = {
                k: v for k, v in (("from", self.date_from), ("to", self.date_to)) if v
            }
        return wire

    def to_dict(self) -> dict:
        return asdict(self)
