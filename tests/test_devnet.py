"""
End-to-end tests over HTTP: devnet nodes served by RPCServer, the
reconciler and orchestrator talking to them through RPCLedgerClient.
"""

import asyncio

import pytest
from aiohttp.test_utils import unused_port

from nftbridge.devnet import Devnet
from nftbridge.errors import ConfigError
from nftbridge.networks import NetworkConfig
from nftbridge.orchestrator import BridgeOrchestrator, BridgeStatus, WatchConfig
from nftbridge.provider import ProviderCache
from nftbridge.reconciler import DeploymentReconciler
from nftbridge.rpc import RPCClient
from nftbridge.wallet import WalletSession


def _local(key, chain_id):
    return NetworkConfig(key=key, chain_id=chain_id,
                         rpc_url=f"http://127.0.0.1:{unused_port()}",
                         block_explorer=f"https://explorer.{key}.test")


class TestDevnet:
    def test_distinct_chain_ids_required(self):
        with pytest.raises(ConfigError):
            Devnet([_local("a", 1), _local("b", 1)])

    @pytest.mark.asyncio
    async def test_rpc_url_needs_port(self):
        devnet = Devnet([NetworkConfig("a", 1, "http://localhost")])
        with pytest.raises(ConfigError):
            await devnet.start()

    def test_info(self):
        a = _local("local-a", 1337)
        devnet = Devnet([a])
        [info] = devnet.info()
        assert info["chain_id"] == 1337
        assert info["rpc_url"] == a.rpc_url

    def test_latency_holds_messages(self):
        devnet = Devnet([_local("a", 1), _local("b", 2)], latency=3600)
        devnet.router.send(1, 2, "0x" + "0a" * 20, "0x" + "0b" * 20, "{}")
        assert devnet.relay_once() == 0
        assert len(devnet.router.pending()) == 1

    @pytest.mark.asyncio
    async def test_bridge_over_http(self, store, deployer):
        nets = [_local("local-a", 1337), _local("local-b", 1338)]
        devnet = Devnet(nets)
        await devnet.start()
        cache = ProviderCache()
        stop = asyncio.Event()
        relay = asyncio.create_task(devnet.run(stop, interval=0.01))
        try:
            report = await DeploymentReconciler(store, deployer, cache).reconcile(nets)
            assert report.seed_tokens == {1337: 13370000, 1338: 13380000}

            orch = BridgeOrchestrator(
                WalletSession(deployer, cache), store, cache,
                watch=WatchConfig(poll_interval=0.02, initial_delay=0.0, timeout=5.0),
            )
            op = await orch.bridge("local-a", "local-b", 13370000)
            assert op.status is BridgeStatus.DESTINATION_CONFIRMED
            assert orch.tx_url("local-a", op.tx_hash) == \
                f"https://explorer.local-a.test/tx/{op.tx_hash}"

            listing = await orch.list_nfts("local-b", force=True)
            assert [item.token_id for item in listing] == [13370000, 13380000]
            assert listing[0].origin_chain_id == 1337

            audit = RPCClient(nets[1].rpc_url)
            try:
                [sent] = await audit.request("admin_messageLog")
                assert (sent["source_chain"], sent["dest_chain"]) == (1337, 1338)
                assert sent["status"] == "DELIVERED"
            finally:
                await audit.close()
        finally:
            stop.set()
            await relay
            await cache.close_all()
            await devnet.stop()
