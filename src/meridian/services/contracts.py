"""
Contract Client - Marketplace and license token operations.

Turns domain actions into contract calls through a WalletGateway:
- writes (list, buy, withdraw) require a connected session on the
  configured chain and wait for inclusion
- reads are eth_call against the configured addresses, never cached

Prices cross the API as native-unit decimal strings and are converted
to wei at the boundary.
"""

import logging
from decimal import Decimal
from typing import Optional

from eth_abi.exceptions import DecodingError
from web3 import Web3

from meridian.config import GatewayConfig
from meridian.errors import ErrorCode, GatewayError
from meridian.models.chain import LicenseToken, Listing, PurchaseResult, TransactionReceipt
from meridian.networks import format_price, parse_price
from meridian.services import abi
from meridian.wallet.gateway import WalletGateway

logger = logging.getLogger(__name__)


class ContractClient:
    """Domain operations against the license token + marketplace pair."""

    def __init__(self, wallet: WalletGateway, config: Optional[GatewayConfig] = None):
        self.wallet = wallet
        self.config = config or wallet.config
        self.license_token_address = Web3.to_checksum_address(self.config.license_token_address)
        self.marketplace_address = Web3.to_checksum_address(self.config.marketplace_address)

    @property
    def contract_addresses(self) -> dict:
        return {
            "licenseToken": self.license_token_address,
            "marketplace": self.marketplace_address,
        }

    # ============================================
    # Plumbing
    # ============================================

    async def _read(self, address: str, signature: str, out_types: list[str], *args) -> tuple:
        try:
            data = await self.wallet.call({"to": address, "data": abi.encode_call(signature, *args)})
        except GatewayError as e:
            logger.error(f"{signature} call failed: {e.message} ({e.cause!r})")
            raise
        if not data:
            logger.error(f"{signature} returned no data from {address}")
            raise GatewayError(ErrorCode.CONTRACT_NOT_FOUND, f"No contract code at {address}")
        try:
            return abi.decode_result(out_types, data)
        except DecodingError as e:
            logger.error(f"Could not decode {signature} result: {e}")
            raise GatewayError(ErrorCode.CONTRACT_ERROR, cause=e) from e

    async def _write(self, address: str, signature: str, *args, value: int = 0) -> TransactionReceipt:
        session = self.wallet.session
        if session is None:
            raise GatewayError(ErrorCode.WALLET_NOT_CONNECTED)
        if session.chain_id != self.config.chain_id:
            raise GatewayError(ErrorCode.WRONG_NETWORK)
        tx = {"to": address, "data": abi.encode_call(signature, *args), "value": value}
        return await self.wallet.send_transaction(tx)

    def _resolve_address(self, address: Optional[str]) -> str:
        address = address or self.wallet.address
        if not address:
            raise GatewayError(ErrorCode.WALLET_NOT_CONNECTED)
        return address

    # ============================================
    # Marketplace writes
    # ============================================

    async def list_dataset(self, dataset_id: str, price: str) -> str:
        """List a dataset at a native-unit price. Returns the tx hash."""
        if not dataset_id:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, "Dataset id is required")
        try:
            price_wei = parse_price(price)
        except ValueError as e:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, str(e), e) from e
        if price_wei <= 0:
            raise GatewayError(ErrorCode.VALIDATION_ERROR, "Price must be greater than zero")

        receipt = await self._write(self.marketplace_address, abi.MARKET_LIST, dataset_id, price_wei)
        logger.info(f"Listed {dataset_id} at {price} ({receipt.transaction_hash})")
        return receipt.transaction_hash

    async def buy_license(self, dataset_id: str) -> PurchaseResult:
        """Buy a license for a listed dataset at its listed price."""
        listing = await self.get_listing(dataset_id)
        if not listing.active:
            raise GatewayError(ErrorCode.CONTRACT_ERROR, f"Dataset {dataset_id} is not listed")

        receipt = await self._write(self.marketplace_address, abi.MARKET_BUY, dataset_id,
                                    value=listing.price)
        token_id = self._token_id_from_logs(receipt.logs, dataset_id)
        if token_id is None:
            logger.warning(f"No purchase event found in {receipt.transaction_hash}")
        logger.info(f"Purchased license for {dataset_id} (token {token_id})")
        return PurchaseResult(tx_hash=receipt.transaction_hash, token_id=token_id)

    def _token_id_from_logs(self, logs: list[dict], dataset_id: str) -> Optional[int]:
        purchased = abi.event_topic(abi.EVENT_PURCHASED)
        minted = abi.event_topic(abi.EVENT_LICENSE_MINTED)
        for log in logs:
            topics = log.get("topics") or []
            if not topics:
                continue
            source = (log.get("address") or "").lower()
            try:
                if topics[0] == purchased and source == self.marketplace_address.lower():
                    event_dataset, _buyer, token_id = abi.decode_event(abi.EVENT_PURCHASED, log)
                    if event_dataset == dataset_id:
                        return int(token_id)
                if topics[0] == minted and source == self.license_token_address.lower():
                    token_id, _buyer, _provider, event_dataset = abi.decode_event(abi.EVENT_LICENSE_MINTED, log)
                    if event_dataset == dataset_id:
                        return int(token_id)
            except (DecodingError, ValueError) as e:
                logger.warning(f"Skipping undecodable log: {e}")
        return None

    async def withdraw_fees(self) -> str:
        """Withdraw accumulated platform fees (owner only)."""
        receipt = await self._write(self.marketplace_address, abi.MARKET_WITHDRAW)
        logger.info(f"Fees withdrawn ({receipt.transaction_hash})")
        return receipt.transaction_hash

    # ============================================
    # Reads
    # ============================================

    async def get_listing(self, dataset_id: str) -> Listing:
        provider, price, active = await self._read(
            self.marketplace_address, abi.MARKET_LISTINGS, ["address", "uint256", "bool"], dataset_id
        )
        return Listing(dataset_id=dataset_id, provider=Web3.to_checksum_address(provider),
                       price=int(price), active=bool(active))

    async def get_balance(self, address: Optional[str] = None) -> int:
        """Number of license tokens held by address."""
        address = self._resolve_address(address)
        (balance,) = await self._read(self.license_token_address, abi.NFT_BALANCE_OF, ["uint256"],
                                      Web3.to_checksum_address(address))
        return int(balance)

    async def get_nft_details(self, token_id: int) -> LicenseToken:
        (owner,) = await self._read(self.license_token_address, abi.NFT_OWNER_OF, ["address"], token_id)
        (dataset_id,) = await self._read(self.license_token_address, abi.NFT_DATASET_IDS, ["string"], token_id)
        (provider,) = await self._read(self.license_token_address, abi.NFT_PROVIDERS, ["address"], token_id)
        return LicenseToken(
            token_id=token_id,
            dataset_id=dataset_id,
            owner=Web3.to_checksum_address(owner),
            provider=Web3.to_checksum_address(provider),
        )

    async def get_total_supply(self) -> int:
        (supply,) = await self._read(self.license_token_address, abi.NFT_TOTAL_SUPPLY, ["uint256"])
        return int(supply)

    async def get_platform_fee(self) -> Decimal:
        """Platform fee in percent (contract stores tenths of a percent)."""
        (fee,) = await self._read(self.marketplace_address, abi.MARKET_FEE_PERCENT, ["uint256"])
        return Decimal(int(fee)) / 10

    async def get_total_fees(self) -> int:
        """Accumulated fees in wei."""
        (fees,) = await self._read(self.marketplace_address, abi.MARKET_TOTAL_FEES, ["uint256"])
        return int(fees)

    async def get_user_licenses(self, address: Optional[str] = None) -> list[LicenseToken]:
        """Licenses minted to address, from LicenseMinted events."""
        address = self._resolve_address(address)
        logs = await self.wallet.get_logs({
            "address": self.license_token_address,
            "topics": [abi.event_topic(abi.EVENT_LICENSE_MINTED)],
            "fromBlock": 0,
            "toBlock": "latest",
        })
        licenses = []
        for log in logs:
            try:
                token_id, buyer, provider, dataset_id = abi.decode_event(abi.EVENT_LICENSE_MINTED, log)
            except (DecodingError, ValueError) as e:
                logger.warning(f"Skipping undecodable LicenseMinted log: {e}")
                continue
            if buyer.lower() == address.lower():
                licenses.append(LicenseToken(
                    token_id=int(token_id),
                    dataset_id=dataset_id,
                    owner=Web3.to_checksum_address(buyer),
                    provider=Web3.to_checksum_address(provider),
                ))
        return licenses

    async def user_owns_license(self, dataset_id: str, address: Optional[str] = None) -> bool:
        licenses = await self.get_user_licenses(address)
        return any(lic.dataset_id == dataset_id for lic in licenses)

    # ============================================
    # Formatting
    # ============================================

    @staticmethod
    def format_price(wei: int) -> str:
        return format_price(wei)

    @staticmethod
    def parse_price(price: str) -> int:
        return parse_price(price)

    def get_transaction_url(self, tx_hash: str) -> str:
        return self.wallet.explorer_tx_url(tx_hash)

    def get_address_url(self, address: str) -> str:
        return self.wallet.explorer_address_url(address)
