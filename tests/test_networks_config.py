import json
from decimal import Decimal

import pytest

from meridian.config import DEFAULT_MARKETPLACE_ADDRESS, GatewayConfig
from meridian.networks import (
    CREDITCOIN_MAINNET,
    CREDITCOIN_TESTNET,
    HARDHAT_LOCAL,
    NETWORKS,
    format_price,
    get_network,
    get_network_by_name,
    parse_chain_id,
    parse_price,
    to_chain_id_hex,
)


class TestNetworks:

    def test_table(self):
        assert set(NETWORKS) == {CREDITCOIN_MAINNET, CREDITCOIN_TESTNET, HARDHAT_LOCAL}
        assert get_network(CREDITCOIN_TESTNET).is_testnet
        assert get_network_by_name("creditcoin-mainnet").chain_id == CREDITCOIN_MAINNET
        assert get_network(1) is None

    def test_add_chain_params(self):
        params = get_network(CREDITCOIN_TESTNET).to_add_chain_params()
        assert params["chainId"] == to_chain_id_hex(CREDITCOIN_TESTNET)
        assert params["nativeCurrency"]["decimals"] == 18
        assert params["rpcUrls"][0].startswith("https://")

    @pytest.mark.parametrize("value,expected", [
        (102031, 102031),
        ("102031", 102031),
        ("0x18e8f", 102031),
        ("0X539", 1337),
    ])
    def test_parse_chain_id(self, value, expected):
        assert parse_chain_id(value) == expected


class TestPrices:

    def test_parse_price(self):
        assert parse_price("1") == 10 ** 18
        assert parse_price("0.5") == 5 * 10 ** 17
        assert parse_price(Decimal("0.000000000000000001")) == 1

    @pytest.mark.parametrize("bad", ["", "abc", "-1", "0.0000000000000000001", "NaN"])
    def test_parse_price_rejects(self, bad):
        with pytest.raises(ValueError):
            parse_price(bad)

    def test_format_price(self):
        assert format_price(5 * 10 ** 17) == "0.5"
        assert format_price(2 * 10 ** 18) == "2"
        assert format_price(0) == "0"


class TestGatewayConfig:

    def test_defaults(self):
        config = GatewayConfig()
        assert config.chain_id == CREDITCOIN_TESTNET
        assert config.marketplace_address == DEFAULT_MARKETPLACE_ADDRESS
        assert config.explorer_url == get_network(CREDITCOIN_TESTNET).explorer_url
        assert config.rpc_url_for(CREDITCOIN_TESTNET) == get_network(CREDITCOIN_TESTNET).rpc_url

    def test_requires_endpoint(self):
        with pytest.raises(ValueError):
            GatewayConfig(dwn_endpoints=[])

    def test_settings_then_environment(self, tmp_path):
        settings = tmp_path / "settings.json"
        settings.write_text(json.dumps({
            "chain_id": "0x539",
            "did_gateway": "https://did.example",
            "unknown_key": True,
        }))
        environ = {
            "MERIDIAN_DID_GATEWAY": "https://override.example",
            "MERIDIAN_DWN_ENDPOINTS": "https://a.example, https://b.example",
            "MERIDIAN_RPC_URL": "http://localhost:9999",
        }
        config = GatewayConfig.load(settings, environ)
        assert config.chain_id == HARDHAT_LOCAL
        assert config.did_gateway == "https://override.example"
        assert config.dwn_endpoints == ["https://a.example", "https://b.example"]
        assert config.rpc_url_for(HARDHAT_LOCAL) == "http://localhost:9999"

    def test_invalid_environment_value_is_ignored(self, tmp_path):
        config = GatewayConfig.load(tmp_path / "missing.json", {"MERIDIAN_HTTP_TIMEOUT": "soon"})
        assert config.http_timeout == 15.0

    def test_explorer_override(self):
        config = GatewayConfig(block_explorer_url="https://scan.example/")
        assert config.explorer_url == "https://scan.example"
