import copy
from typing import Optional

import pytest
from eth_abi import encode
from web3 import Web3

from meridian.config import GatewayConfig
from meridian.errors import GatewayError
from meridian.events import ProviderEvent
from meridian.models.identity import QueryFilter, VaultRecord
from meridian.models.store import MemoryStore
from meridian.networks import CREDITCOIN_TESTNET
from meridian.services import abi
from meridian.services.dwn import VaultTransport
from meridian.services.identity import IdentityVaultService
from meridian.services.permissions import PermissionManager
from meridian.wallet.gateway import WalletGateway
from meridian.wallet.provider import (
    UNRECOGNIZED_CHAIN_CODE,
    ProviderRpcError,
    WalletProvider,
)

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
BUYER_DID = "did:dht:buyer123"


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep settings, store and logs inside the test's tmp dir."""
    monkeypatch.setenv("MERIDIAN_HOME", str(tmp_path / "home"))
    for key in ("MERIDIAN_CHAIN_ID", "MERIDIAN_RPC_URL", "MERIDIAN_PRIVATE_KEY", "MERIDIAN_STORE_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    yield


class FakeClock:
    """Callable clock returning epoch seconds; advance() moves it forward."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now += minutes * 60 + seconds


class FakeTransport(VaultTransport):
    """In-memory DID gateway + DWN. Set fail_code to simulate outages."""

    def __init__(self):
        self.published: dict[str, dict] = {}
        self.records: dict[str, dict[str, VaultRecord]] = {}
        self.fail_code: Optional[str] = None
        self.closed = False

    def _maybe_fail(self):
        if self.fail_code:
            raise GatewayError(self.fail_code)

    async def publish_did(self, key, document):
        self._maybe_fail()
        self.published[key.did] = document

    async def resolve_did(self, did):
        self._maybe_fail()
        return self.published.get(did)

    async def write_record(self, key, did, record):
        self._maybe_fail()
        self.records.setdefault(did, {})[record.id] = copy.deepcopy(record)

    async def read_record(self, key, did, record_id):
        self._maybe_fail()
        record = self.records.get(did, {}).get(record_id)
        return copy.deepcopy(record)

    async def query_records(self, key, did, query: QueryFilter):
        self._maybe_fail()
        return [copy.deepcopy(r) for r in self.records.get(did, {}).values() if query.matches(r)]

    async def delete_record(self, key, did, record_id):
        self._maybe_fail()
        return self.records.get(did, {}).pop(record_id, None) is not None

    async def close(self):
        self.closed = True


class FakeProvider(WalletProvider):
    """Scriptable wallet provider."""

    name = "fake"

    def __init__(self, accounts=None, chain_id: int = CREDITCOIN_TESTNET, known_chains=None):
        super().__init__()
        self.accounts = list(accounts) if accounts is not None else [ALICE]
        self.chain_id = chain_id
        self.known_chains = set(known_chains) if known_chains is not None else {chain_id}
        self.request_error: Optional[Exception] = None
        self.switch_error: Optional[Exception] = None
        self.add_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.select_on_add = True
        self.switch_calls: list[str] = []
        self.added: list[dict] = []
        self.sent: list[dict] = []
        self.receipts: dict[str, dict] = {}
        self.pending_polls = 0
        self.receipt_status = 1
        self.receipt_logs: list[dict] = []
        self.block_number = 100
        self.call_results: dict[str, bytes] = {}
        self.calls: list[dict] = []
        self.logs: list[dict] = []
        self.balances: dict[str, int] = {}
        self.closed = False

    async def request_accounts(self):
        if self.request_error:
            raise self.request_error
        return list(self.accounts)

    async def get_accounts(self):
        return list(self.accounts)

    async def get_chain_id(self):
        return self.chain_id

    async def switch_chain(self, chain_id_hex):
        self.switch_calls.append(chain_id_hex)
        if self.switch_error:
            raise self.switch_error
        chain_id = int(chain_id_hex, 16)
        if chain_id not in self.known_chains:
            raise ProviderRpcError(UNRECOGNIZED_CHAIN_CODE, "Unrecognized chain")
        self.chain_id = chain_id
        await self.events.emit(ProviderEvent.CHAIN_CHANGED, chain_id_hex)

    async def add_chain(self, params):
        self.added.append(params)
        if self.add_error:
            raise self.add_error
        chain_id = int(params["chainId"], 16)
        self.known_chains.add(chain_id)
        if self.select_on_add:
            self.chain_id = chain_id

    async def send_transaction(self, tx):
        if self.send_error:
            raise self.send_error
        self.sent.append(tx)
        tx_hash = "0x" + f"{len(self.sent):064x}"
        self.receipts[tx_hash] = {
            "transactionHash": tx_hash,
            "blockNumber": self.block_number,
            "status": self.receipt_status,
            "gasUsed": 21000,
            "logs": list(self.receipt_logs),
        }
        return tx_hash

    async def estimate_gas(self, tx):
        if self.send_error:
            raise self.send_error
        return 21000

    async def get_balance(self, address):
        return self.balances.get(address, 0)

    async def call(self, tx):
        self.calls.append(tx)
        return self.call_results.get(tx["data"][:10], b"")

    async def get_transaction_receipt(self, tx_hash):
        if self.pending_polls > 0:
            self.pending_polls -= 1
            return None
        return self.receipts.get(tx_hash)

    async def get_block_number(self):
        return self.block_number

    async def get_logs(self, log_filter):
        return list(self.logs)

    async def close(self):
        self.closed = True

    # Test helpers

    def set_call_result(self, signature: str, types: list[str], values: list) -> None:
        selector = Web3.to_hex(abi.function_selector(signature))
        self.call_results[selector] = encode(types, values)

    async def emit(self, event: ProviderEvent, data=None) -> None:
        await self.events.emit(event, data)


def make_log(address: str, signature: str, values: list) -> dict:
    """A log entry for an event with all-non-indexed arguments."""
    return {
        "address": address,
        "topics": [abi.event_topic(signature)],
        "data": Web3.to_hex(encode(abi.EVENT_DATA_TYPES[signature], values)),
        "blockNumber": 100,
        "transactionHash": "0x" + "ab" * 32,
    }


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def vault(store, transport, clock):
    return IdentityVaultService(store, transport, ["https://dwn.example"], clock=clock)


@pytest.fixture
def permissions(vault):
    return PermissionManager(vault)


@pytest.fixture
def config():
    return GatewayConfig(receipt_poll_interval=1.0, receipt_timeout=5.0)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def wallet(store, provider, config):
    return WalletGateway(store, provider, config, sleep=_no_sleep)
