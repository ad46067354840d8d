"""
Wallet Gateway - Chain connection lifecycle and transactions.

States:
    DISCONNECTED -> CONNECTING -> CONNECTED

The gateway holds at most one ChainSession. Provider events keep it in
sync: an account change or chain change mutates the session in place,
while an empty account list or a provider disconnect ends it.

Write failures are classified once and never retried:
- user rejection (code 4001 / ACTION_REJECTED) -> USER_REJECTED
- insufficient funds -> INSUFFICIENT_FUNDS
- anything else -> TRANSACTION_FAILED
"""

import asyncio
import logging
import math
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from meridian.config import GatewayConfig
from meridian.errors import ErrorCode, GatewayError
from meridian.events import EventBus, ProviderEvent, WalletEvent
from meridian.models.chain import (
    TX_CONFIRMING,
    TX_FAILED,
    TX_PENDING,
    TX_SUCCESS,
    ChainSession,
    NetworkInfo,
    TransactionReceipt,
    normalize_log,
)
from meridian.models.store import KeyValueStore, STORAGE_KEYS
from meridian.networks import get_network, parse_chain_id, to_chain_id_hex
from meridian.utils import now_ms, truncate
from meridian.wallet.provider import (
    UNRECOGNIZED_CHAIN_CODE,
    USER_REJECTED_CODE,
    ProviderRpcError,
    WalletProvider,
)

logger = logging.getLogger(__name__)

_REJECTION_MARKERS = ("action_rejected", "user rejected", "user denied")
_FUNDS_MARKERS = ("insufficient funds",)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def is_user_rejection(error: BaseException) -> bool:
    if getattr(error, "code", None) == USER_REJECTED_CODE:
        return True
    text = str(error).lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


def classify_transaction_error(error: BaseException) -> GatewayError:
    """Map a provider failure on a write path to a GatewayError."""
    if isinstance(error, GatewayError):
        return error
    if is_user_rejection(error):
        return GatewayError(ErrorCode.USER_REJECTED, cause=error)
    if any(marker in str(error).lower() for marker in _FUNDS_MARKERS):
        return GatewayError(ErrorCode.INSUFFICIENT_FUNDS, cause=error)
    return GatewayError(ErrorCode.TRANSACTION_FAILED, cause=error)


class WalletGateway:
    """Connects to a wallet provider and submits transactions through it."""

    def __init__(self, store: KeyValueStore,
                 provider: Optional[WalletProvider] = None,
                 config: Optional[GatewayConfig] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.store = store
        self.provider = provider
        self.config = config or GatewayConfig()
        self.events: EventBus[WalletEvent] = EventBus()
        self._sleep = sleep
        self._session: Optional[ChainSession] = None
        self._state = ConnectionState.DISCONNECTED
        self._listeners: list[tuple[ProviderEvent, Callable[[Any], Any]]] = []

    # ============================================
    # Accessors
    # ============================================

    @property
    def session(self) -> Optional[ChainSession]:
        return self._session

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def address(self) -> Optional[str]:
        return self._session.address if self._session else None

    @property
    def chain_id(self) -> Optional[int]:
        return self._session.chain_id if self._session else None

    def is_connected(self) -> bool:
        return self._session is not None

    def is_correct_network(self) -> bool:
        return self.chain_id == self.config.chain_id

    def on(self, event: WalletEvent, callback: Callable[[Any], Any]) -> Callable[[], None]:
        return self.events.on(event, callback)

    def off(self, event: WalletEvent, callback: Callable[[Any], Any]) -> None:
        self.events.off(event, callback)

    def _require_provider(self) -> WalletProvider:
        if self.provider is None:
            raise GatewayError(ErrorCode.NO_WALLET_DETECTED)
        return self.provider

    def _require_session(self) -> ChainSession:
        if self._session is None:
            raise GatewayError(ErrorCode.WALLET_NOT_CONNECTED)
        return self._session

    # ============================================
    # Connection lifecycle
    # ============================================

    async def connect(self) -> dict:
        """Request accounts and make sure the wallet is on the target chain."""
        provider = self._require_provider()
        self._state = ConnectionState.CONNECTING
        try:
            try:
                accounts = await provider.request_accounts()
            except ProviderRpcError as e:
                if is_user_rejection(e):
                    raise GatewayError(ErrorCode.USER_REJECTED, cause=e) from e
                raise GatewayError(ErrorCode.WALLET_CONNECTION_FAILED, cause=e) from e
            if not accounts:
                raise GatewayError(ErrorCode.WALLET_CONNECTION_FAILED, "No accounts returned by wallet")

            chain_id = await self._read_chain_id()
            if chain_id != self.config.chain_id:
                logger.info(f"Wallet on chain {chain_id}, switching to {self.config.chain_id}")
                chain_id = await self.switch_network(self.config.chain_id)
        except GatewayError:
            self._state = ConnectionState.DISCONNECTED
            raise
        except Exception as e:
            self._state = ConnectionState.DISCONNECTED
            logger.error(f"Wallet connection failed: {e}", exc_info=True)
            raise GatewayError(ErrorCode.WALLET_CONNECTION_FAILED, cause=e) from e

        self._session = ChainSession.create(accounts[0], chain_id, provider.name)
        self._persist_session()
        self._register_listeners(provider)
        self._state = ConnectionState.CONNECTED
        logger.info(f"Wallet connected: {truncate(accounts[0])} on chain {chain_id}")
        return {"address": accounts[0], "chain_id": chain_id}

    async def restore(self) -> Optional[dict]:
        """Reconnect a previously stored session, if any."""
        if not self.store.get(STORAGE_KEYS["WALLET_CONNECTED"]) or self.provider is None:
            return None
        stored = self.store.get(STORAGE_KEYS["WEB3_ADDRESS"])
        try:
            accounts = await self.provider.get_accounts()
            if not stored or stored.lower() not in [a.lower() for a in accounts]:
                raise GatewayError(ErrorCode.WALLET_CONNECTION_FAILED, "Stored account is no longer authorized")
            return await self.connect()
        except Exception as e:
            logger.warning(f"Could not restore wallet session: {e}")
            self._clear_persisted()
            return None

    async def disconnect(self) -> None:
        """End the session and notify subscribers."""
        self._unregister_listeners()
        self._session = None
        self._state = ConnectionState.DISCONNECTED
        self._clear_persisted()
        logger.info("Wallet disconnected")
        await self.events.emit(WalletEvent.DISCONNECTED, None)

    def _persist_session(self) -> None:
        self.store.set(STORAGE_KEYS["WEB3_ADDRESS"], self._session.address)
        self.store.set(STORAGE_KEYS["WEB3_CHAIN_ID"], self._session.chain_id)
        self.store.set(STORAGE_KEYS["WALLET_CONNECTED"], True)
        self.store.set(STORAGE_KEYS["LAST_CONNECTION_TIME"], now_ms())

    def _clear_persisted(self) -> None:
        for name in ("WEB3_ADDRESS", "WEB3_CHAIN_ID", "WALLET_CONNECTED"):
            self.store.remove(STORAGE_KEYS[name])

    # ============================================
    # Provider events
    # ============================================

    def _register_listeners(self, provider: WalletProvider) -> None:
        self._unregister_listeners()
        self._listeners = [
            (ProviderEvent.ACCOUNTS_CHANGED, self._on_accounts_changed),
            (ProviderEvent.CHAIN_CHANGED, self._on_chain_changed),
            (ProviderEvent.DISCONNECT, self._on_provider_disconnect),
        ]
        for event, callback in self._listeners:
            provider.on(event, callback)

    def _unregister_listeners(self) -> None:
        if self.provider is not None:
            for event, callback in self._listeners:
                self.provider.remove_listener(event, callback)
        self._listeners = []

    async def _on_accounts_changed(self, accounts: list[str]) -> None:
        if not accounts:
            logger.info("Wallet returned no accounts, ending session")
            await self.disconnect()
            return
        if self._session is None or accounts[0] == self._session.address:
            return
        self._session.address = accounts[0]
        self._persist_session()
        logger.info(f"Account changed to {truncate(accounts[0])}")
        await self.events.emit(WalletEvent.ACCOUNT_CHANGED, accounts[0])

    async def _on_chain_changed(self, chain_id: Any) -> None:
        chain_id = parse_chain_id(chain_id)
        if self._session is not None:
            self._session.chain_id = chain_id
            self._persist_session()
        logger.info(f"Chain changed to {chain_id}")
        await self.events.emit(WalletEvent.CHAIN_CHANGED, chain_id)

    async def _on_provider_disconnect(self, _data: Any) -> None:
        await self.disconnect()

    # ============================================
    # Networks
    # ============================================

    async def _read_chain_id(self) -> int:
        return parse_chain_id(await self._require_provider().get_chain_id())

    async def switch_network(self, chain_id: int) -> int:
        """Switch the wallet to chain_id, adding it first if unknown."""
        provider = self._require_provider()
        chain_hex = to_chain_id_hex(chain_id)
        try:
            await provider.switch_chain(chain_hex)
        except ProviderRpcError as e:
            if e.code != UNRECOGNIZED_CHAIN_CODE:
                raise self._switch_error(e) from e
            await self.add_network(chain_id)

        current = await self._read_chain_id()
        if current != chain_id:
            # Adding a chain does not always select it
            try:
                await provider.switch_chain(chain_hex)
            except ProviderRpcError as e:
                raise self._switch_error(e) from e
            current = await self._read_chain_id()
        if current != chain_id:
            raise GatewayError(ErrorCode.NETWORK_SWITCH_FAILED,
                               f"Wallet is still on chain {current}")

        if self._session is not None:
            self._session.chain_id = current
            self._persist_session()
        logger.info(f"Switched to chain {current}")
        return current

    async def add_network(self, chain_id: int) -> None:
        """Add a chain from the network table to the wallet."""
        network = get_network(chain_id)
        if network is None:
            raise GatewayError(ErrorCode.NETWORK_SWITCH_FAILED, f"Unknown network: {chain_id}")
        params = network.to_add_chain_params()
        rpc = self.config.rpc_url_for(chain_id)
        if rpc:
            params["rpcUrls"] = [rpc]
        try:
            await self._require_provider().add_chain(params)
        except ProviderRpcError as e:
            raise self._switch_error(e) from e
        logger.info(f"Added network {network.display_name}")

    @staticmethod
    def _switch_error(error: ProviderRpcError) -> GatewayError:
        if is_user_rejection(error):
            return GatewayError(ErrorCode.USER_REJECTED, cause=error)
        return GatewayError(ErrorCode.NETWORK_SWITCH_FAILED, cause=error)

    async def get_network_info(self) -> NetworkInfo:
        if self._session is not None:
            return NetworkInfo.for_chain(self._session.chain_id)
        return NetworkInfo.for_chain(await self._read_chain_id())

    # ============================================
    # Reads
    # ============================================

    async def get_balance(self, address: Optional[str] = None) -> int:
        """Native balance in wei."""
        provider = self._require_provider()
        address = address or self._require_session().address
        try:
            return await provider.get_balance(address)
        except ProviderRpcError as e:
            raise GatewayError(ErrorCode.NETWORK_ERROR, cause=e) from e

    async def call(self, tx: dict) -> bytes:
        """Read-only contract call."""
        provider = self._require_provider()
        if self._session is not None:
            tx = {"from": self._session.address, **tx}
        try:
            return await provider.call(tx)
        except ProviderRpcError as e:
            raise GatewayError(ErrorCode.CONTRACT_ERROR, cause=e) from e

    async def get_logs(self, log_filter: dict) -> list[dict]:
        provider = self._require_provider()
        try:
            logs = await provider.get_logs(log_filter)
        except ProviderRpcError as e:
            raise GatewayError(ErrorCode.NETWORK_ERROR, cause=e) from e
        return [normalize_log(log) for log in logs]

    async def get_transaction_status(self, tx_hash: str) -> str:
        """pending | confirming | success | failed"""
        provider = self._require_provider()
        try:
            raw = await provider.get_transaction_receipt(tx_hash)
            if raw is None:
                return TX_PENDING
            receipt = TransactionReceipt.from_rpc(raw)
            if not receipt.succeeded:
                return TX_FAILED
            confirmations = await provider.get_block_number() - receipt.block_number
        except ProviderRpcError as e:
            raise GatewayError(ErrorCode.NETWORK_ERROR, cause=e) from e
        return TX_SUCCESS if confirmations >= self.config.confirmation_blocks else TX_CONFIRMING

    # ============================================
    # Writes
    # ============================================

    async def estimate_gas(self, tx: dict) -> int:
        provider = self._require_provider()
        session = self._require_session()
        try:
            return await provider.estimate_gas({"from": session.address, **tx})
        except Exception as e:
            raise classify_transaction_error(e) from e

    async def send_transaction(self, tx: dict) -> TransactionReceipt:
        """Submit a transaction and wait for its receipt."""
        provider = self._require_provider()
        session = self._require_session()
        try:
            tx_hash = await provider.send_transaction({"from": session.address, **tx})
        except Exception as e:
            error = classify_transaction_error(e)
            logger.error(f"Transaction not sent ({error.code}): {e}")
            raise error from e

        logger.info(f"Transaction sent: {tx_hash}")
        receipt = await self.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            logger.error(f"Transaction reverted: {tx_hash}")
            raise GatewayError(ErrorCode.TRANSACTION_FAILED, f"Transaction reverted: {tx_hash}")
        return receipt

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Poll for inclusion until the configured receipt timeout."""
        provider = self._require_provider()
        max_polls = max(1, math.ceil(self.config.receipt_timeout / self.config.receipt_poll_interval))
        for attempt in range(max_polls + 1):
            try:
                raw = await provider.get_transaction_receipt(tx_hash)
            except ProviderRpcError as e:
                raise GatewayError(ErrorCode.NETWORK_ERROR, cause=e) from e
            if raw is not None:
                return TransactionReceipt.from_rpc(raw)
            if attempt < max_polls:
                await self._sleep(self.config.receipt_poll_interval)

        logger.warning(f"Timed out waiting for {tx_hash}")
        raise GatewayError(ErrorCode.TIMEOUT_ERROR, f"Transaction {tx_hash} was not included in time")

    # ============================================
    # Explorer links
    # ============================================

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.config.explorer_url}/tx/{tx_hash}"

    def explorer_address_url(self, address: str) -> str:
        return f"{self.config.explorer_url}/address/{address}"

    async def close(self) -> None:
        self._unregister_listeners()
        if self.provider is not None:
            await self.provider.close()
