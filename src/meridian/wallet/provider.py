"""
Wallet Provider - The injected chain-wallet capability.

WalletProvider mirrors the EIP-1193 surface a browser wallet exposes
(request accounts, switch/add chain, send transaction, read calls and
account/chain/disconnect events) as async Python methods. Failures are
raised as ProviderRpcError carrying the EIP-1193 error code.

LocalKeyProvider is a production provider backed by a local private key:
transactions are signed with eth_account and sent over JSON-RPC with
web3's AsyncWeb3.
"""

import logging
from typing import Any, Callable, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from meridian.events import EventBus, ProviderEvent
from meridian.networks import get_network, parse_chain_id, to_chain_id_hex

logger = logging.getLogger(__name__)


# EIP-1193 / EIP-3085 error codes
USER_REJECTED_CODE = 4001
UNAUTHORIZED_CODE = 4100
DISCONNECTED_CODE = 4900
UNRECOGNIZED_CHAIN_CODE = 4902
INTERNAL_ERROR_CODE = -32603

# Gas limit = estimate * buffer
GAS_BUFFER = 1.2


class ProviderRpcError(Exception):
    """A wallet/provider failure with an EIP-1193 error code."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class WalletProvider:
    """Abstract base class for wallet providers."""

    name = "wallet"

    def __init__(self):
        self.events: EventBus[ProviderEvent] = EventBus()

    def on(self, event: ProviderEvent, callback: Callable[[Any], Any]) -> Callable[[], None]:
        return self.events.on(event, callback)

    def remove_listener(self, event: ProviderEvent, callback: Callable[[Any], Any]) -> None:
        self.events.off(event, callback)

    async def request_accounts(self) -> list[str]:
        """Ask the wallet for account access (may prompt the user)."""
        raise NotImplementedError

    async def get_accounts(self) -> list[str]:
        """Accounts already authorized, without prompting."""
        raise NotImplementedError

    async def get_chain_id(self) -> int:
        raise NotImplementedError

    async def switch_chain(self, chain_id_hex: str) -> None:
        raise NotImplementedError

    async def add_chain(self, params: dict) -> None:
        raise NotImplementedError

    async def send_transaction(self, tx: dict) -> str:
        """Sign and broadcast. Returns the 0x transaction hash."""
        raise NotImplementedError

    async def estimate_gas(self, tx: dict) -> int:
        raise NotImplementedError

    async def get_balance(self, address: str) -> int:
        raise NotImplementedError

    async def call(self, tx: dict) -> bytes:
        raise NotImplementedError

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Receipt as a dict, or None while pending."""
        raise NotImplementedError

    async def get_block_number(self) -> int:
        raise NotImplementedError

    async def get_logs(self, log_filter: dict) -> list[dict]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class LocalKeyProvider(WalletProvider):
    """
    Provider that signs with a local private key.

    RPC endpoints come from the network table unless overridden. Switching
    to a chain with no known RPC raises code 4902 until add_chain() is
    called with its parameters.
    """

    name = "local-key"

    def __init__(self, private_key: str, chain_id: int,
                 rpc_urls: Optional[dict[int, str]] = None,
                 request_timeout: float = 30.0):
        super().__init__()
        self._account = Account.from_key(private_key)
        self._rpc_urls: dict[int, str] = {}
        for cid, url in (rpc_urls or {}).items():
            self._rpc_urls[parse_chain_id(cid)] = url
        self._request_timeout = request_timeout
        self._web3: dict[int, AsyncWeb3] = {}
        self._chain_id = chain_id
        if self._rpc_url(chain_id) is None:
            raise ValueError(f"No RPC URL known for chain {chain_id}")

    @property
    def address(self) -> str:
        return self._account.address

    def _rpc_url(self, chain_id: int) -> Optional[str]:
        if chain_id in self._rpc_urls:
            return self._rpc_urls[chain_id]
        network = get_network(chain_id)
        return network.rpc_url if network else None

    def _w3(self) -> AsyncWeb3:
        """AsyncWeb3 instance for the current chain (created on first use)."""
        if self._chain_id not in self._web3:
            self._web3[self._chain_id] = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
                self._rpc_url(self._chain_id),
                request_kwargs={"timeout": self._request_timeout},
            ))
        return self._web3[self._chain_id]

    async def request_accounts(self) -> list[str]:
        return [self.address]

    async def get_accounts(self) -> list[str]:
        return [self.address]

    async def get_chain_id(self) -> int:
        return self._chain_id

    async def switch_chain(self, chain_id_hex: str) -> None:
        chain_id = parse_chain_id(chain_id_hex)
        if self._rpc_url(chain_id) is None:
            raise ProviderRpcError(UNRECOGNIZED_CHAIN_CODE, f"Unrecognized chain ID {chain_id_hex}")
        if chain_id != self._chain_id:
            self._chain_id = chain_id
            logger.info(f"Provider switched to chain {chain_id}")
            await self.events.emit(ProviderEvent.CHAIN_CHANGED, to_chain_id_hex(chain_id))

    async def add_chain(self, params: dict) -> None:
        try:
            chain_id = parse_chain_id(params["chainId"])
            rpc_url = params["rpcUrls"][0]
        except (KeyError, IndexError, ValueError) as e:
            raise ProviderRpcError(INTERNAL_ERROR_CODE, f"Invalid chain parameters: {e}") from e
        self._rpc_urls[chain_id] = rpc_url
        logger.info(f"Provider added chain {chain_id} ({params.get('chainName', '')})")

    async def send_transaction(self, tx: dict) -> str:
        w3 = self._w3()
        try:
            sender = Web3.to_checksum_address(self.address)
            to_sign = {
                "from": sender,
                "to": Web3.to_checksum_address(tx["to"]),
                "value": int(tx.get("value", 0)),
                "data": tx.get("data", "0x"),
                "chainId": self._chain_id,
                "nonce": await w3.eth.get_transaction_count(sender, "pending"),
                "gasPrice": await w3.eth.gas_price,
            }
            if tx.get("gas"):
                to_sign["gas"] = int(tx["gas"])
            else:
                estimate = await w3.eth.estimate_gas({k: v for k, v in to_sign.items() if k != "nonce"})
                to_sign["gas"] = int(estimate * GAS_BUFFER)

            signed = self._account.sign_transaction(to_sign)
            tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise _rpc_error(e) from e
        return Web3.to_hex(tx_hash)

    async def estimate_gas(self, tx: dict) -> int:
        try:
            return int(await self._w3().eth.estimate_gas(_checksum_tx(tx, self.address)))
        except Exception as e:
            raise _rpc_error(e) from e

    async def get_balance(self, address: str) -> int:
        try:
            return int(await self._w3().eth.get_balance(Web3.to_checksum_address(address)))
        except Exception as e:
            raise _rpc_error(e) from e

    async def call(self, tx: dict) -> bytes:
        try:
            return bytes(await self._w3().eth.call(_checksum_tx(tx, self.address)))
        except Exception as e:
            raise _rpc_error(e) from e

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        try:
            receipt = await self._w3().eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise _rpc_error(e) from e
        return dict(receipt) if receipt else None

    async def get_block_number(self) -> int:
        try:
            return int(await self._w3().eth.block_number)
        except Exception as e:
            raise _rpc_error(e) from e

    async def get_logs(self, log_filter: dict) -> list[dict]:
        try:
            logs = await self._w3().eth.get_logs(log_filter)
        except Exception as e:
            raise _rpc_error(e) from e
        return [dict(log) for log in logs]

    async def close(self) -> None:
        for w3 in self._web3.values():
            await w3.provider.disconnect()
        self._web3.clear()
        await self.events.emit(ProviderEvent.DISCONNECT, None)


def _checksum_tx(tx: dict, default_from: str) -> dict:
    out = dict(tx)
    out["from"] = Web3.to_checksum_address(tx.get("from") or default_from)
    if tx.get("to"):
        out["to"] = Web3.to_checksum_address(tx["to"])
    return out


def _rpc_error(error: Exception) -> ProviderRpcError:
    """Translate a web3/transport exception into a ProviderRpcError."""
    if isinstance(error, ProviderRpcError):
        return error
    # Web3RPCError keeps the node's {code, message} on rpc_response; older
    # releases passed it as args[0]
    response = getattr(error, "rpc_response", None)
    if isinstance(response, dict) and isinstance(response.get("error"), dict):
        detail = response["error"]
    else:
        detail = error.args[0] if error.args else None
    if isinstance(detail, dict) and "message" in detail:
        return ProviderRpcError(int(detail.get("code", INTERNAL_ERROR_CODE)), str(detail["message"]))
    return ProviderRpcError(INTERNAL_ERROR_CODE, str(error) or error.__class__.__name__)
