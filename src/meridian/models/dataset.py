"""
Dataset model.

Dataset records are vault payloads stored under the dataset schema. The
payload carries the descriptive metadata, the SHA-256 hash of the content
and the content itself.
"""

from dataclasses import dataclass, asdict, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


# Upload limits
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB
ALLOWED_FILE_TYPES = {
    "text/csv": ".csv",
    "application/json": ".json",
    "text/plain": ".txt",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
}


@dataclass
class DatasetMetadata:
    """Caller-supplied description of a dataset."""
    name: str
    description: str
    category: str
    file_type: str
    tags: list[str] = field(default_factory=list)
    quality_score: Optional[float] = None
    suggested_price: Optional[str] = None   # native units, e.g. "0.5"

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Dataset name is required")
        if not self.category:
            raise ValueError("Dataset category is required")
        if self.file_type not in ALLOWED_FILE_TYPES:
            raise ValueError(f"Invalid file type: {self.file_type}. Allowed: CSV, JSON, TXT, XLS, XLSX")
        if self.quality_score is not None and not 0 <= self.quality_score <= 100:
            raise ValueError(f"quality_score must be between 0 and 100, got {self.quality_score}")


@dataclass
class DatasetRecord:
    """A dataset as stored in the vault."""
    id: str
    name: str
    description: str
    category: str
    file_hash: str                  # SHA-256 hex
    file_size: int                  # bytes
    file_type: str
    upload_date: str                # ISO format
    provider_did: str
    tags: list[str] = field(default_factory=list)
    quality_score: Optional[float] = None
    suggested_price: Optional[str] = None

    def to_payload(self, content: Optional[str] = None) -> dict:
        """Vault payload (wire shape)."""
        payload = {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "fileHash": self.file_hash,
            "fileSize": self.file_size,
            "fileType": self.file_type,
            "uploadDate": self.upload_date,
            "providerDID": self.provider_did,
            "qualityScore": self.quality_score,
            "suggestedPrice": self.suggested_price,
        }
        if content is not None:
            payload["content"] = content
        return payload

    @classmethod
    def from_payload(cls, record_id: str, data: Any) -> "DatasetRecord":
        """Parse a dataset payload with input validation."""
        if not isinstance(data, dict):
            raise ValueError("Dataset payload must be an object")
        for key in ("name", "fileHash", "fileSize", "fileType"):
            if key not in data:
                raise ValueError(f"Dataset payload missing '{key}'")
        size = data["fileSize"]
        if not isinstance(size, int) or size < 0:
            raise ValueError(f"fileSize must be non-negative integer, got {size}")
        return cls(
            id=record_id,
            name=data["name"],
            description=data.get("description", ""),
            category=data.get("category", ""),
            file_hash=data["fileHash"],
            file_size=size,
            file_type=data["fileType"],
            upload_date=data.get("uploadDate", ""),
            provider_did=data.get("providerDID", ""),
            tags=list(data.get("tags") or []),
            quality_score=data.get("qualityScore"),
            suggested_price=data.get("suggestedPrice"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class DatasetFilter:
    """Listing filter. Unset fields match everything."""
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)   # any tag matches
    min_quality_score: Optional[float] = None
    max_price: Optional[str] = None

    def matches(self, dataset: DatasetRecord) -> bool:
        if self.category and dataset.category != self.category:
            return False
        if self.tags and not set(self.tags) & set(dataset.tags):
            return False
        if self.min_quality_score is not None:
            if dataset.quality_score is None or dataset.quality_score < self.min_quality_score:
                return False
        if self.max_price is not None and dataset.suggested_price is not None:
            try:
                if Decimal(dataset.suggested_price) > Decimal(self.max_price):
                    return False
            except InvalidOperation:
                return False
        return True
