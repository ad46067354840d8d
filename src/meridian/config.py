"""
Gateway configuration.

Values are resolved in order: built-in defaults, then settings.json in the
app directory, then MERIDIAN_* environment variables.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

from meridian.networks import DEFAULT_CHAIN_ID, CONFIRMATION_BLOCKS, get_network, parse_chain_id
from meridian.utils import get_settings_path

logger = logging.getLogger(__name__)

DEFAULT_DWN_ENDPOINTS = ["https://dwn.tbddev.org/beta"]
DEFAULT_DID_GATEWAY = "https://diddht.tbddev.org"

# Deployed on Creditcoin testnet
DEFAULT_LICENSE_TOKEN_ADDRESS = "0x8146A9122F805c8cCf0881564289Fd10678f7De6"
DEFAULT_MARKETPLACE_ADDRESS = "0x3C55823414683725Ee1ae7258E63406bef16A875"


@dataclass
class GatewayConfig:
    """Externally supplied gateway settings."""
    dwn_endpoints: list[str] = field(default_factory=lambda: list(DEFAULT_DWN_ENDPOINTS))
    did_gateway: str = DEFAULT_DID_GATEWAY
    chain_id: int = DEFAULT_CHAIN_ID
    license_token_address: str = DEFAULT_LICENSE_TOKEN_ADDRESS
    marketplace_address: str = DEFAULT_MARKETPLACE_ADDRESS
    block_explorer_url: Optional[str] = None  # None = use network table
    custom_rpcs: dict[int, str] = field(default_factory=dict)  # chain_id -> RPC URL
    http_timeout: float = 15.0             # seconds, vault/DID gateway requests
    receipt_poll_interval: float = 2.0     # seconds between receipt polls
    receipt_timeout: float = 180.0         # seconds to wait for inclusion
    confirmation_blocks: int = CONFIRMATION_BLOCKS
    log_retention_days: int = 0

    def __post_init__(self):
        if not self.dwn_endpoints:
            raise ValueError("At least one DWN endpoint is required")
        if self.confirmation_blocks < 1:
            raise ValueError("confirmation_blocks must be >= 1")
        if self.receipt_poll_interval <= 0 or self.receipt_timeout <= 0:
            raise ValueError("Receipt polling interval and timeout must be positive")

    @property
    def explorer_url(self) -> str:
        """Block explorer base URL for the target chain."""
        if self.block_explorer_url:
            return self.block_explorer_url.rstrip("/")
        network = get_network(self.chain_id)
        return network.explorer_url.rstrip("/") if network else ""

    def rpc_url_for(self, chain_id: int) -> Optional[str]:
        """Custom RPC if configured, else the network table default."""
        if chain_id in self.custom_rpcs:
            return self.custom_rpcs[chain_id]
        network = get_network(chain_id)
        return network.rpc_url if network else None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GatewayConfig":
        """Create from a settings dictionary, ignoring unknown keys."""
        if not isinstance(data, dict):
            raise ValueError(f"Settings must be an object, got {type(data).__name__}")
        known = {f for f in cls.__dataclass_fields__}
        values = {k: v for k, v in data.items() if k in known}
        if "chain_id" in values:
            values["chain_id"] = parse_chain_id(values["chain_id"])
        if "custom_rpcs" in values:
            values["custom_rpcs"] = {
                parse_chain_id(k): v for k, v in (values["custom_rpcs"] or {}).items()
            }
        return cls(**values)

    @classmethod
    def load(cls, settings_path: Optional[Path] = None,
             environ: Optional[dict] = None) -> "GatewayConfig":
        """Load defaults <- settings file <- environment."""
        settings_path = settings_path or get_settings_path()
        environ = os.environ if environ is None else environ

        data: dict = {}
        if settings_path.exists():
            try:
                with open(settings_path, "r") as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to load settings: {e}")

        env_map = {
            "MERIDIAN_DWN_ENDPOINTS": ("dwn_endpoints", _split_list),
            "MERIDIAN_DID_GATEWAY": ("did_gateway", str),
            "MERIDIAN_CHAIN_ID": ("chain_id", parse_chain_id),
            "MERIDIAN_CONTRACT_NFT": ("license_token_address", str),
            "MERIDIAN_CONTRACT_MARKET": ("marketplace_address", str),
            "MERIDIAN_BLOCK_EXPLORER": ("block_explorer_url", str),
            "MERIDIAN_HTTP_TIMEOUT": ("http_timeout", float),
            "MERIDIAN_RECEIPT_TIMEOUT": ("receipt_timeout", float),
            "MERIDIAN_LOG_RETENTION_DAYS": ("log_retention_days", int),
        }
        for env_key, (attr, convert) in env_map.items():
            raw = environ.get(env_key)
            if raw:
                try:
                    data[attr] = convert(raw)
                except ValueError:
                    logger.warning(f"Ignoring invalid {env_key}={raw!r}")

        rpc = environ.get("MERIDIAN_RPC_URL")
        if rpc:
            chain_id = parse_chain_id(data.get("chain_id", DEFAULT_CHAIN_ID))
            rpcs = dict(data.get("custom_rpcs") or {})
            rpcs[str(chain_id)] = rpc
            data["custom_rpcs"] = rpcs

        return cls.from_dict(data)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]
