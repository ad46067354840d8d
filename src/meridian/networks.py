"""
Meridian Networks - Chain configurations and unit conversion

Supports Creditcoin mainnet/testnet plus a local Hardhat chain.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from web3 import Web3

# ============================================
# Network Configurations
# ============================================

@dataclass
class NetworkConfig:
    """Configuration for a blockchain network."""
    chain_id: int
    name: str
    display_name: str
    rpc_urls: list[str]
    block_explorer_urls: list[str]
    is_testnet: bool
    native_name: str
    native_symbol: str
    native_decimals: int = 18
    extra: dict = field(default_factory=dict)

    @property
    def rpc_url(self) -> str:
        return self.rpc_urls[0]

    @property
    def explorer_url(self) -> str:
        return self.block_explorer_urls[0] if self.block_explorer_urls else ""

    @property
    def chain_id_hex(self) -> str:
        return to_chain_id_hex(self.chain_id)

    def to_add_chain_params(self) -> dict:
        """Parameters for a wallet_addEthereumChain request."""
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.display_name,
            "nativeCurrency": {
                "name": self.native_name,
                "symbol": self.native_symbol,
                "decimals": self.native_decimals,
            },
            "rpcUrls": list(self.rpc_urls),
            "blockExplorerUrls": list(self.block_explorer_urls),
        }


CREDITCOIN_MAINNET = 102030
CREDITCOIN_TESTNET = 102031
HARDHAT_LOCAL = 1337

NETWORKS = {
    # Creditcoin Mainnet
    CREDITCOIN_MAINNET: NetworkConfig(
        chain_id=CREDITCOIN_MAINNET,
        name="creditcoin-mainnet",
        display_name="Creditcoin Mainnet",
        rpc_urls=["https://rpc.mainnet.creditcoin.network"],
        block_explorer_urls=["https://explorer.creditcoin.network"],
        is_testnet=False,
        native_name="Creditcoin",
        native_symbol="CTC",
    ),
    # Creditcoin Testnet (marketplace contracts are deployed here)
    CREDITCOIN_TESTNET: NetworkConfig(
        chain_id=CREDITCOIN_TESTNET,
        name="creditcoin-testnet",
        display_name="Creditcoin Testnet",
        rpc_urls=["https://rpc.cc3-testnet.creditcoin.network"],
        block_explorer_urls=["https://explorer.cc3-testnet.creditcoin.network"],
        is_testnet=True,
        native_name="Test Creditcoin",
        native_symbol="tCTC",
    ),
    # Local Hardhat node
    HARDHAT_LOCAL: NetworkConfig(
        chain_id=HARDHAT_LOCAL,
        name="hardhat",
        display_name="Hardhat Local",
        rpc_urls=["http://127.0.0.1:8545"],
        block_explorer_urls=[],
        is_testnet=True,
        native_name="Ether",
        native_symbol="ETH",
    ),
}

# Default network
DEFAULT_CHAIN_ID = CREDITCOIN_TESTNET

# Transaction is final after this many confirmations
CONFIRMATION_BLOCKS = 12


# ============================================
# Utility Functions
# ============================================

def get_network(chain_id: int) -> Optional[NetworkConfig]:
    """Get network config by chain ID."""
    return NETWORKS.get(chain_id)


def get_network_by_name(name: str) -> Optional[NetworkConfig]:
    """Get network config by name."""
    for network in NETWORKS.values():
        if network.name == name:
            return network
    return None


def to_chain_id_hex(chain_id: int) -> str:
    """102031 -> '0x18e8f'"""
    return hex(chain_id)


def parse_chain_id(value) -> int:
    """Accept a chain id as int, decimal string or 0x-hex string."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def parse_price(price: str | int | Decimal) -> int:
    """
    Convert a native-unit price ("0.5") into wei.

    Raises ValueError for malformed, negative or over-precise input.
    """
    try:
        amount = Decimal(str(price).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid price: {price!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid price: {price!r}")
    wei = amount * (Decimal(10) ** 18)
    if wei != wei.to_integral_value():
        raise ValueError(f"Price has more than 18 decimal places: {price!r}")
    return int(wei)


def format_price(wei: int) -> str:
    """Format a wei amount as a native-unit decimal string ("0.5")."""
    value = Web3.from_wei(int(wei), "ether")
    text = format(Decimal(value).normalize(), "f")
    return text
