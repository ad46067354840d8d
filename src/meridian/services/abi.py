"""
Contract ABI surface for the license token and marketplace contracts.

Calls are encoded with eth_abi; selectors and event topics are derived
with Web3.keccak from the canonical signatures below.
"""

from eth_abi import decode, encode
from web3 import Web3


# License token (ERC-721)
NFT_MINT = "mint(address,string,address)"
NFT_BALANCE_OF = "balanceOf(address)"
NFT_OWNER_OF = "ownerOf(uint256)"
NFT_DATASET_IDS = "datasetIds(uint256)"
NFT_PROVIDERS = "providers(uint256)"
NFT_TOTAL_SUPPLY = "totalSupply()"
EVENT_LICENSE_MINTED = "LicenseMinted(uint256,address,address,string)"

# Marketplace
MARKET_LIST = "list(string,uint256)"
MARKET_BUY = "buy(string)"
MARKET_LISTINGS = "listings(string)"
MARKET_WITHDRAW = "withdraw()"
MARKET_FEE_PERCENT = "feePercent()"
MARKET_TOTAL_FEES = "totalFees()"
EVENT_LISTED = "Listed(string,address,uint256)"
EVENT_PURCHASED = "Purchased(string,address,uint256)"

# Non-indexed event payload types (all arguments live in log data)
EVENT_DATA_TYPES = {
    EVENT_LICENSE_MINTED: ["uint256", "address", "address", "string"],
    EVENT_LISTED: ["string", "address", "uint256"],
    EVENT_PURCHASED: ["string", "address", "uint256"],
}


def argument_types(signature: str) -> list[str]:
    """'list(string,uint256)' -> ['string', 'uint256']"""
    inner = signature[signature.index("(") + 1:signature.rindex(")")]
    return [t for t in inner.split(",") if t]


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


def event_topic(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature))


def encode_call(signature: str, *args) -> str:
    """Calldata for a function call as a 0x hex string."""
    data = function_selector(signature) + encode(argument_types(signature), list(args))
    return Web3.to_hex(data)


def decode_result(types: list[str], data: bytes) -> tuple:
    return tuple(decode(types, data))


def decode_event(signature: str, log: dict) -> tuple:
    """Decode a log's data for an event whose arguments are all non-indexed."""
    data = log.get("data") or "0x"
    raw = bytes.fromhex(data[2:]) if isinstance(data, str) else bytes(data)
    return tuple(decode(EVENT_DATA_TYPES[signature], raw))
