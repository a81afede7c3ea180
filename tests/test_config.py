"""
Tests for network descriptors, deployment records and accounts.
"""

import json

import pytest

from nftbridge.contract import ABI
from nftbridge.deployments import DeploymentRecord, DeploymentStore, default_deployments_path
from nftbridge.errors import (
    ConfigError,
    InvalidAddressError,
    NetworkSwitchError,
    RPCConnectionError,
    UnknownNetworkError,
)
from nftbridge.networks import (
    DEFAULT_NETWORKS,
    NetworkConfig,
    NetworkRegistry,
    load_networks,
    networks_from_deployments,
)
from nftbridge.wallet import (
    ZERO_ADDRESS,
    Account,
    WalletSession,
    normalize_address,
    require_recipient,
    same_address,
)
from unittest.mock import AsyncMock, MagicMock


def _record(chain_id=43113, network="avalanche-testnet"):
    return DeploymentRecord(
        chain_id=chain_id,
        address="0x" + "ab" * 20,
        network=network,
        rpc_url="http://127.0.0.1:9650",
        block_explorer="https://testnet.snowtrace.io",
        abi=list(ABI),
    )


# ══════════════════════════════════════════════════════════════════════
#  Networks
# ══════════════════════════════════════════════════════════════════════

class TestNetworks:
    def test_builtin_catalogue(self):
        assert DEFAULT_NETWORKS["avalanche-testnet"].chain_id == 43113
        assert DEFAULT_NETWORKS["base-testnet"].chain_id == 84532

    def test_unknown_network(self):
        with pytest.raises(UnknownNetworkError, match="Network nowhere not found"):
            load_networks().get("nowhere")

    def test_network_file_extends_catalogue(self, tmp_path):
        path = tmp_path / "networks.json"
        path.write_text(json.dumps({
            "local-a": {"name": "Local A", "chainId": 1337, "rpcUrl": "http://127.0.0.1:8545"},
            "avalanche-testnet": {"chainId": 43113, "rpcUrl": "http://127.0.0.1:9650"},
        }))
        registry = load_networks(str(path))
        assert registry.get("local-a").display_name == "Local A"
        assert registry.get("avalanche-testnet").rpc_url == "http://127.0.0.1:9650"
        assert registry.by_chain_id(1337).key == "local-a"

    def test_network_file_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "networks.json"
        path.write_text(json.dumps({"local-a": {"chainId": 1337, "rpcUrl": "http://x:1"}}))
        monkeypatch.setenv("NFTBRIDGE_NETWORKS", str(path))
        assert "local-a" in load_networks()

    def test_duplicate_chain_id_rejected(self):
        registry = NetworkRegistry()
        registry.add(NetworkConfig("a", 1, "http://a"))
        with pytest.raises(ConfigError):
            registry.add(NetworkConfig("b", 1, "http://b"))

    def test_missing_chain_id(self):
        with pytest.raises(ConfigError):
            NetworkConfig.from_dict("x", {"rpcUrl": "http://x"})

    def test_explorer_links(self):
        net = DEFAULT_NETWORKS["base-testnet"]
        assert net.tx_url("0xabc") == "https://sepolia.basescan.org/tx/0xabc"
        assert net.address_url("0x1") == "https://sepolia.basescan.org/address/0x1"
        assert NetworkConfig("x", 1, "http://x").tx_url("0xabc") == ""

    def test_networks_from_deployments(self):
        registry = networks_from_deployments({43113: _record()})
        net = registry.get("avalanche-testnet")
        assert net.chain_id == 43113
        assert net.block_explorer == "https://testnet.snowtrace.io"


# ══════════════════════════════════════════════════════════════════════
#  Deployment records
# ══════════════════════════════════════════════════════════════════════

class TestDeploymentStore:
    def test_missing_file_loads_empty(self, store):
        assert store.load() == {}

    def test_persisted_form(self, store):
        store.save({43113: _record()})
        with open(store.path) as f:
            text = f.read()
        data = json.loads(text)
        assert list(data) == ["43113"]
        assert sorted(data["43113"]) == [
            "abi", "address", "blockExplorer", "chainId", "network", "rpcUrl",
        ]
        assert text == json.dumps(data, sort_keys=True, indent=2) + "\n"

    def test_save_load_is_stable(self, store):
        records = {84532: _record(84532, "base-testnet"), 43113: _record()}
        store.save(records)
        with open(store.path, "rb") as f:
            first = f.read()
        store.save(store.load())
        with open(store.path, "rb") as f:
            assert f.read() == first

    def test_lookup(self, store):
        store.save({43113: _record(), 84532: _record(84532, "base-testnet")})
        assert store.get(84532).network == "base-testnet"
        assert store.by_network("avalanche-testnet").chain_id == 43113
        assert store.by_network("polygon-amoy") is None

    def test_key_must_match_chain_id(self, store):
        with open(store.path, "w") as f:
            json.dump({"1": _record().to_dict()}, f)
        with pytest.raises(ConfigError):
            store.load()

    def test_invalid_json(self, store):
        with open(store.path, "w") as f:
            f.write("{")
        with pytest.raises(ConfigError):
            store.load()

    def test_default_path_from_environment(self, monkeypatch):
        monkeypatch.setenv("NFTBRIDGE_DEPLOYMENTS", "/tmp/elsewhere.json")
        assert default_deployments_path() == "/tmp/elsewhere.json"
        assert DeploymentStore().path == "/tmp/elsewhere.json"


# ══════════════════════════════════════════════════════════════════════
#  Accounts and addresses
# ══════════════════════════════════════════════════════════════════════

class TestAddresses:
    def test_normalize(self):
        assert normalize_address("0x" + "AB" * 20) == "0x" + "ab" * 20
        with pytest.raises(InvalidAddressError):
            normalize_address("0x123")

    def test_zero_recipient_rejected(self):
        with pytest.raises(InvalidAddressError):
            require_recipient(ZERO_ADDRESS)

    def test_same_address(self):
        assert same_address("0x" + "AB" * 20, "0x" + "ab" * 20)
        assert not same_address(None, "0x" + "ab" * 20)

    def test_account_is_deterministic(self):
        a = Account.from_key("11" * 32)
        b = Account.from_key("0x" + "11" * 32)
        assert a.address == b.address
        assert normalize_address(a.address) == a.address

    def test_bad_private_key(self):
        with pytest.raises(InvalidAddressError):
            Account.from_key("1234")
        with pytest.raises(InvalidAddressError):
            Account.from_key("zz" * 32)

    def test_generated_accounts_differ(self):
        assert Account.generate().address != Account.generate().address


class TestWalletSession:
    def _providers(self, chain_id=None, error=None):
        client = MagicMock()
        client.chain_id = AsyncMock(return_value=chain_id, side_effect=error)
        providers = MagicMock()
        providers.get.return_value = client
        return providers

    @pytest.mark.asyncio
    async def test_switch(self, deployer, base):
        wallet = WalletSession(deployer, self._providers(84532), chain_id=43113)
        await wallet.switch_network(base)
        assert wallet.chain_id == 84532

    @pytest.mark.asyncio
    async def test_switch_refused_on_chain_mismatch(self, deployer, base):
        wallet = WalletSession(deployer, self._providers(1), chain_id=43113)
        with pytest.raises(NetworkSwitchError):
            await wallet.switch_network(base)
        assert wallet.chain_id == 43113

    @pytest.mark.asyncio
    async def test_switch_refused_when_unreachable(self, deployer, base):
        providers = self._providers(error=RPCConnectionError("refused"))
        wallet = WalletSession(deployer, providers)
        with pytest.raises(NetworkSwitchError):
            await wallet.switch_network(base)
        assert wallet.chain_id is None

    @pytest.mark.asyncio
    async def test_ensure_network_skips_when_current(self, deployer, base):
        providers = self._providers(84532)
        wallet = WalletSession(deployer, providers, chain_id=84532)
        await wallet.ensure_network(base)
        providers.get.assert_not_called()
