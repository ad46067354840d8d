"""
Chain models.

Records wallet sessions, marketplace listings, license tokens and
transaction receipts. Amounts are integers in wei; Decimal strings appear
only at the formatting boundary.

Transaction status lifecycle:
- pending: no receipt yet
- confirming: included, fewer than CONFIRMATION_BLOCKS confirmations
- success: included with enough confirmations
- failed: receipt status 0
"""

from datetime import datetime, timezone
from dataclasses import dataclass, asdict, field
from typing import Any, Optional

from meridian.networks import format_price, get_network


# Valid status values
TX_PENDING = "pending"
TX_CONFIRMING = "confirming"
TX_SUCCESS = "success"
TX_FAILED = "failed"

RECEIPT_SUCCESS = "success"
RECEIPT_FAILED = "failed"


@dataclass
class ChainSession:
    """An open wallet connection. At most one per WalletGateway."""
    address: str
    chain_id: int
    connected_at: str                 # ISO format
    provider_name: str = "unknown"

    @classmethod
    def create(cls, address: str, chain_id: int, provider_name: str = "unknown") -> "ChainSession":
        return cls(
            address=address,
            chain_id=chain_id,
            connected_at=datetime.now(timezone.utc).isoformat(),
            provider_name=provider_name,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class NetworkInfo:
    chain_id: int
    name: str

    @classmethod
    def for_chain(cls, chain_id: int) -> "NetworkInfo":
        network = get_network(chain_id)
        return cls(chain_id=chain_id, name=network.display_name if network else f"Unknown ({chain_id})")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Listing:
    """Marketplace listing for a dataset."""
    dataset_id: str
    provider: str
    price: int                        # wei
    active: bool

    def format_price(self) -> str:
        return format_price(self.price)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class LicenseToken:
    """A minted dataset license NFT."""
    token_id: int
    dataset_id: str
    owner: str
    provider: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TransactionReceipt:
    """Normalized receipt returned by the wallet gateway."""
    transaction_hash: str
    block_number: int
    status: str                       # success | failed
    gas_used: int = 0
    logs: list[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == RECEIPT_SUCCESS

    @classmethod
    def from_rpc(cls, data: Any) -> "TransactionReceipt":
        """Create from a JSON-RPC receipt (dict or web3 AttributeDict)."""
        raw_status = data.get("status")
        if isinstance(raw_status, str):
            raw_status = int(raw_status, 16)
        return cls(
            transaction_hash=_hex(data.get("transactionHash")),
            block_number=_int(data.get("blockNumber")),
            status=RECEIPT_SUCCESS if raw_status == 1 else RECEIPT_FAILED,
            gas_used=_int(data.get("gasUsed")),
            logs=[normalize_log(log) for log in data.get("logs") or []],
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PurchaseResult:
    tx_hash: str
    token_id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_log(log: Any) -> dict:
    """Log entry with hex-string topics/data and int block number."""
    return {
        "address": log.get("address"),
        "topics": [_hex(t) for t in log.get("topics") or []],
        "data": _hex(log.get("data")) or "0x",
        "blockNumber": _int(log.get("blockNumber")),
        "transactionHash": _hex(log.get("transactionHash")),
    }


def _hex(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    if hasattr(value, "hex") and not isinstance(value, str):
        text = value.hex()
    return text if text.startswith("0x") else "0x" + text


def _int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)
