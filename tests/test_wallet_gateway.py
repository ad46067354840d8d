import pytest

from conftest import ALICE, BOB, FakeProvider, _no_sleep
from meridian.errors import ErrorCode, GatewayError
from meridian.events import ProviderEvent, WalletEvent
from meridian.models.chain import TX_CONFIRMING, TX_FAILED, TX_PENDING, TX_SUCCESS
from meridian.models.store import STORAGE_KEYS
from meridian.networks import CREDITCOIN_TESTNET, HARDHAT_LOCAL, to_chain_id_hex
from meridian.wallet.gateway import (
    ConnectionState,
    WalletGateway,
    classify_transaction_error,
)
from meridian.wallet.provider import ProviderRpcError

TX = {"to": BOB, "value": 1, "data": "0x"}


def gateway_for(store, config, **kwargs):
    provider = FakeProvider(**kwargs)
    return provider, WalletGateway(store, provider, config, sleep=_no_sleep)


class TestConnect:

    @pytest.mark.asyncio
    async def test_no_provider(self, store, config):
        gateway = WalletGateway(store, None, config)
        with pytest.raises(GatewayError) as exc:
            await gateway.connect()
        assert exc.value.code == ErrorCode.NO_WALLET_DETECTED

    @pytest.mark.asyncio
    async def test_connect_persists_session(self, wallet, store):
        result = await wallet.connect()
        assert result == {"address": ALICE, "chain_id": CREDITCOIN_TESTNET}
        assert wallet.state == ConnectionState.CONNECTED
        assert wallet.is_correct_network()
        assert store.get(STORAGE_KEYS["WEB3_ADDRESS"]) == ALICE
        assert store.get(STORAGE_KEYS["WEB3_CHAIN_ID"]) == CREDITCOIN_TESTNET
        assert store.get(STORAGE_KEYS["WALLET_CONNECTED"]) is True

    @pytest.mark.asyncio
    async def test_no_accounts(self, store, config):
        _, gateway = gateway_for(store, config, accounts=[])
        with pytest.raises(GatewayError) as exc:
            await gateway.connect()
        assert exc.value.code == ErrorCode.WALLET_CONNECTION_FAILED
        assert gateway.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_user_rejects_connection(self, wallet, provider):
        provider.request_error = ProviderRpcError(4001, "User rejected the request.")
        with pytest.raises(GatewayError) as exc:
            await wallet.connect()
        assert exc.value.code == ErrorCode.USER_REJECTED
        assert not wallet.is_connected()

    @pytest.mark.asyncio
    async def test_wrong_chain_is_switched(self, store, config):
        provider, gateway = gateway_for(
            store, config, chain_id=HARDHAT_LOCAL, known_chains={HARDHAT_LOCAL, CREDITCOIN_TESTNET})
        result = await gateway.connect()
        assert result["chain_id"] == CREDITCOIN_TESTNET
        assert provider.switch_calls == [to_chain_id_hex(CREDITCOIN_TESTNET)]
        assert provider.added == []

    @pytest.mark.asyncio
    async def test_unknown_chain_is_added(self, store, config):
        provider, gateway = gateway_for(store, config, chain_id=HARDHAT_LOCAL)
        result = await gateway.connect()
        assert result["chain_id"] == CREDITCOIN_TESTNET
        assert provider.added[0]["chainId"] == to_chain_id_hex(CREDITCOIN_TESTNET)
        assert provider.added[0]["rpcUrls"] == [config.rpc_url_for(CREDITCOIN_TESTNET)]

    @pytest.mark.asyncio
    async def test_added_chain_not_selected_is_switched_again(self, store, config):
        provider, gateway = gateway_for(store, config, chain_id=HARDHAT_LOCAL)
        provider.select_on_add = False
        assert (await gateway.connect())["chain_id"] == CREDITCOIN_TESTNET
        assert len(provider.switch_calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,expected", [
        (4001, ErrorCode.USER_REJECTED),
        (-32603, ErrorCode.NETWORK_SWITCH_FAILED),
    ])
    async def test_switch_failures(self, store, config, code, expected):
        provider, gateway = gateway_for(
            store, config, chain_id=HARDHAT_LOCAL, known_chains={HARDHAT_LOCAL, CREDITCOIN_TESTNET})
        provider.switch_error = ProviderRpcError(code, "switch failed")
        with pytest.raises(GatewayError) as exc:
            await gateway.connect()
        assert exc.value.code == expected
        assert not gateway.is_connected()

    @pytest.mark.asyncio
    async def test_add_rejected(self, store, config):
        provider, gateway = gateway_for(store, config, chain_id=HARDHAT_LOCAL)
        provider.add_error = ProviderRpcError(4001, "User rejected the request.")
        with pytest.raises(GatewayError) as exc:
            await gateway.switch_network(CREDITCOIN_TESTNET)
        assert exc.value.code == ErrorCode.USER_REJECTED

    @pytest.mark.asyncio
    async def test_network_info(self, wallet):
        await wallet.connect()
        info = await wallet.get_network_info()
        assert info.chain_id == CREDITCOIN_TESTNET
        assert info.name == "Creditcoin Testnet"


class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_disconnect_clears_state(self, wallet, store):
        seen = []
        wallet.on(WalletEvent.DISCONNECTED, seen.append)
        await wallet.connect()
        await wallet.disconnect()
        assert seen == [None]
        assert wallet.session is None
        assert store.get(STORAGE_KEYS["WALLET_CONNECTED"]) is None
        assert store.get(STORAGE_KEYS["WEB3_ADDRESS"]) is None

    @pytest.mark.asyncio
    async def test_restore(self, wallet, store, config):
        await wallet.connect()
        fresh = WalletGateway(store, FakeProvider(), config, sleep=_no_sleep)
        assert await fresh.restore() == {"address": ALICE, "chain_id": CREDITCOIN_TESTNET}

    @pytest.mark.asyncio
    async def test_restore_with_revoked_account(self, wallet, store, config):
        await wallet.connect()
        fresh = WalletGateway(store, FakeProvider(accounts=[BOB]), config, sleep=_no_sleep)
        assert await fresh.restore() is None
        assert store.get(STORAGE_KEYS["WALLET_CONNECTED"]) is None

    @pytest.mark.asyncio
    async def test_restore_without_stored_session(self, wallet):
        assert await wallet.restore() is None


class TestProviderEvents:

    @pytest.mark.asyncio
    async def test_account_change(self, wallet, provider, store):
        seen = []
        wallet.on(WalletEvent.ACCOUNT_CHANGED, seen.append)
        await wallet.connect()
        await provider.emit(ProviderEvent.ACCOUNTS_CHANGED, [BOB])
        assert seen == [BOB]
        assert wallet.address == BOB
        assert store.get(STORAGE_KEYS["WEB3_ADDRESS"]) == BOB

    @pytest.mark.asyncio
    async def test_same_account_is_ignored(self, wallet, provider):
        seen = []
        wallet.on(WalletEvent.ACCOUNT_CHANGED, seen.append)
        await wallet.connect()
        await provider.emit(ProviderEvent.ACCOUNTS_CHANGED, [ALICE])
        assert seen == []

    @pytest.mark.asyncio
    async def test_empty_accounts_disconnects(self, wallet, provider):
        seen = []
        wallet.on(WalletEvent.DISCONNECTED, seen.append)
        await wallet.connect()
        await provider.emit(ProviderEvent.ACCOUNTS_CHANGED, [])
        assert seen == [None]
        assert not wallet.is_connected()

    @pytest.mark.asyncio
    async def test_chain_change(self, wallet, provider):
        seen = []
        wallet.on(WalletEvent.CHAIN_CHANGED, seen.append)
        await wallet.connect()
        await provider.emit(ProviderEvent.CHAIN_CHANGED, "0x539")
        assert seen == [HARDHAT_LOCAL]
        assert wallet.chain_id == HARDHAT_LOCAL
        assert not wallet.is_correct_network()

    @pytest.mark.asyncio
    async def test_provider_disconnect(self, wallet, provider):
        await wallet.connect()
        await provider.emit(ProviderEvent.DISCONNECT)
        assert wallet.state == ConnectionState.DISCONNECTED
        assert provider.events.listener_count(ProviderEvent.CHAIN_CHANGED) == 0

    @pytest.mark.asyncio
    async def test_listeners_are_not_duplicated(self, wallet, provider):
        await wallet.connect()
        await wallet.connect()
        assert provider.events.listener_count(ProviderEvent.ACCOUNTS_CHANGED) == 1


class TestTransactions:

    @pytest.mark.asyncio
    async def test_send_transaction(self, wallet, provider):
        await wallet.connect()
        receipt = await wallet.send_transaction(TX)
        assert receipt.succeeded
        assert receipt.block_number == 100
        assert provider.sent[0]["from"] == ALICE

    @pytest.mark.asyncio
    async def test_requires_session(self, wallet):
        with pytest.raises(GatewayError) as exc:
            await wallet.send_transaction(TX)
        assert exc.value.code == ErrorCode.WALLET_NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_reverted_transaction(self, wallet, provider):
        await wallet.connect()
        provider.receipt_status = 0
        with pytest.raises(GatewayError) as exc:
            await wallet.send_transaction(TX)
        assert exc.value.code == ErrorCode.TRANSACTION_FAILED

    @pytest.mark.asyncio
    async def test_receipt_after_a_few_polls(self, wallet, provider):
        await wallet.connect()
        provider.pending_polls = 3
        assert (await wallet.send_transaction(TX)).succeeded

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, wallet, provider):
        await wallet.connect()
        provider.pending_polls = 100
        with pytest.raises(GatewayError) as exc:
            await wallet.send_transaction(TX)
        assert exc.value.code == ErrorCode.TIMEOUT_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,expected", [
        (ProviderRpcError(4001, "User denied transaction signature"), ErrorCode.USER_REJECTED),
        (Exception("insufficient funds for gas * price + value"), ErrorCode.INSUFFICIENT_FUNDS),
        (Exception("execution reverted"), ErrorCode.TRANSACTION_FAILED),
    ])
    async def test_send_failures(self, wallet, provider, error, expected):
        await wallet.connect()
        provider.send_error = error
        with pytest.raises(GatewayError) as exc:
            await wallet.send_transaction(TX)
        assert exc.value.code == expected

    def test_classify_recognizes_action_rejected(self):
        error = classify_transaction_error(Exception("ACTION_REJECTED: user rejected action"))
        assert error.code == ErrorCode.USER_REJECTED

    @pytest.mark.asyncio
    async def test_transaction_status(self, wallet, provider):
        await wallet.connect()
        assert await wallet.get_transaction_status("0x" + "00" * 32) == TX_PENDING

        receipt = await wallet.send_transaction(TX)
        tx_hash = receipt.transaction_hash
        assert await wallet.get_transaction_status(tx_hash) == TX_CONFIRMING
        provider.block_number = 112
        assert await wallet.get_transaction_status(tx_hash) == TX_SUCCESS

        provider.receipts[tx_hash]["status"] = 0
        assert await wallet.get_transaction_status(tx_hash) == TX_FAILED

    @pytest.mark.asyncio
    async def test_balance(self, wallet, provider):
        provider.balances[ALICE] = 5 * 10 ** 18
        await wallet.connect()
        assert await wallet.get_balance() == 5 * 10 ** 18
        assert await wallet.get_balance(BOB) == 0


class TestExplorerLinks:

    def test_urls(self, wallet):
        assert wallet.explorer_tx_url("0xabc") == "https://explorer.cc3-testnet.creditcoin.network/tx/0xabc"
        assert wallet.explorer_address_url(ALICE).endswith(f"/address/{ALICE}")
