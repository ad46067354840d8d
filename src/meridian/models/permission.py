"""
Permission model.

Grants are stored as vault records under the permission schema; typed
views are parsed explicitly at the read boundary via from_dict().

Timestamps are epoch milliseconds. Invariant: expiry, when present, is
strictly greater than created_at.
"""

from dataclasses import dataclass, asdict
from typing import Optional

INTERFACES = ("Records", "Protocols")
METHODS = ("Read", "Write", "Delete", "Query")

# Default TTL for short-lived analytical access
DEFAULT_TEMPORARY_ACCESS_MINUTES = 30
MAX_EXPIRY_DAYS = 365


@dataclass
class PermissionScope:
    """What a grant allows and until when."""
    interface: str = "Records"
    method: str = "Read"
    protocol: Optional[str] = None
    expiry: Optional[int] = None  # epoch ms

    def validate(self) -> None:
        if self.interface not in INTERFACES:
            raise ValueError(f"Invalid interface: {self.interface}. Must be one of {INTERFACES}")
        if self.method not in METHODS:
            raise ValueError(f"Invalid method: {self.method}. Must be one of {METHODS}")

    def to_dict(self) -> dict:
        data = {"interface": self.interface, "method": self.method}
        if self.protocol is not None:
            data["protocol"] = self.protocol
        if self.expiry is not None:
            data["expiry"] = self.expiry
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PermissionScope":
        if not isinstance(data, dict):
            raise ValueError(f"Permission scope must be an object, got {type(data).__name__}")
        expiry = data.get("expiry")
        if expiry is not None and not _is_epoch_ms(expiry):
            raise ValueError(f"expiry must be epoch milliseconds, got {expiry!r}")
        return cls(
            interface=data.get("interface", "Records"),
            method=data.get("method", "Read"),
            protocol=data.get("protocol"),
            expiry=expiry,
        )


def _is_epoch_ms(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class PermissionGrant:
    """A discretionary, optionally time-bounded access grant."""
    id: str                 # vault record id of the grant
    granted_to: str
    granted_by: str
    record_id: str
    scope: PermissionScope
    created_at: int         # epoch ms
    revoked: bool = False

    @property
    def expiry(self) -> Optional[int]:
        return self.scope.expiry

    def is_active(self, now: int) -> bool:
        """Unrevoked and not past expiry at time `now` (epoch ms)."""
        if self.revoked:
            return False
        return self.expiry is None or self.expiry > now

    def to_payload(self) -> dict:
        """Vault payload (wire shape)."""
        return {
            "grantedTo": self.granted_to,
            "grantedBy": self.granted_by,
            "recordId": self.record_id,
            "scope": self.scope.to_dict(),
            "createdAt": self.created_at,
            "expiry": self.expiry,
        }

    @classmethod
    def from_payload(cls, record_id: str, data: dict) -> "PermissionGrant":
        """Parse a grant payload with input validation."""
        if not isinstance(data, dict):
            raise ValueError("Permission payload must be an object")
        for key in ("grantedTo", "grantedBy", "recordId", "createdAt"):
            if key not in data:
                raise ValueError(f"Permission payload missing '{key}'")
        created_at = data["createdAt"]
        if not _is_epoch_ms(created_at):
            raise ValueError(f"createdAt must be epoch milliseconds, got {created_at!r}")
        scope = PermissionScope.from_dict(data.get("scope") or {})
        if scope.expiry is None and data.get("expiry") is not None:
            if not _is_epoch_ms(data["expiry"]):
                raise ValueError(f"expiry must be epoch milliseconds, got {data['expiry']!r}")
            scope.expiry = data["expiry"]
        if scope.expiry is not None and scope.expiry <= created_at:
            raise ValueError("Permission expiry must be after createdAt")
        return cls(
            id=record_id,
            granted_to=data["grantedTo"],
            granted_by=data["grantedBy"],
            record_id=data["recordId"],
            scope=scope,
            created_at=created_at,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PermissionRevocation:
    """Immutable marker superseding earlier grants for (granted_to, record_id)."""
    id: str
    granted_to: str
    record_id: str
    revoked_by: str
    revoked_at: int  # epoch ms

    def supersedes(self, grant: PermissionGrant) -> bool:
        return (
            grant.granted_to == self.granted_to
            and grant.record_id == self.record_id
            and self.revoked_at >= grant.created_at
        )

    def to_payload(self) -> dict:
        return {
            "grantedTo": self.granted_to,
            "recordId": self.record_id,
            "revokedBy": self.revoked_by,
            "revokedAt": self.revoked_at,
        }

    @classmethod
    def from_payload(cls, record_id: str, data: dict) -> "PermissionRevocation":
        if not isinstance(data, dict):
            raise ValueError("Revocation payload must be an object")
        for key in ("grantedTo", "recordId", "revokedAt"):
            if key not in data:
                raise ValueError(f"Revocation payload missing '{key}'")
        if not _is_epoch_ms(data["revokedAt"]):
            raise ValueError(f"revokedAt must be epoch milliseconds, got {data['revokedAt']!r}")
        return cls(
            id=record_id,
            granted_to=data["grantedTo"],
            record_id=data["recordId"],
            revoked_by=data.get("revokedBy", ""),
            revoked_at=data["revokedAt"],
        )
