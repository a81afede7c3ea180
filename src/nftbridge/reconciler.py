"""
nftbridge — Deployment reconciler

Brings a set of target networks to a single consistent state: one bridge
contract per network, and a *complete* trust graph among every network
with a deployment record.

Running the reconciler twice with the same targets deploys nothing new
and leaves the deployment file byte-identical.  Adding a network to the
targets deploys only there, then connects it to every existing network
(both directions).


A contract is recorded as soon as its deployment is confirmed, before the
seed mint, so a run that fails later never leaves an unrecorded contract
behind.  A recorded contract that has never minted gets its seed on the
next run.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .client import NFTContract
from .contract import ABI
from .deployments import DeploymentRecord, DeploymentStore
from .errors import BridgeError, DeploymentError, WrongNetworkError
from .networks import NetworkConfig
from .wallet import Account

logger = logging.getLogger("nftbridge.reconciler")


def complete_graph(chain_ids: Iterable[int]) -> List[Tuple[int, int]]:
    """Every unordered pair of distinct chain ids, ``(low, high)`` ordered."""
    ids = sorted(set(int(c) for c in chain_ids))
    return list(itertools.combinations(ids, 2))


@dataclass
class ReconcileReport:
    deployed: List[str] = field(default_factory=list)
    reused: List[str] = field(default_factory=list)
    seed_tokens: Dict[int, int] = field(default_factory=dict)
    edges: List[Tuple[int, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployed": list(self.deployed),
            "reused": list(self.reused),
            "seed_tokens": {str(k): v for k, v in self.seed_tokens.items()},
            "edges": [list(e) for e in self.edges],
        }


def _network_of(record: DeploymentRecord) -> NetworkConfig:
    return NetworkConfig(
        key=record.network,
        name=record.network,
        chain_id=record.chain_id,
        rpc_url=record.rpc_url,
        block_explorer=record.block_explorer,
    )


class DeploymentReconciler:
    """Deploys missing contracts and wires up the trust graph.

    ``providers`` is anything with ``get(network) -> LedgerClient``.
    """

    def __init__(self, store: DeploymentStore, account: Account, providers: Any):
        self.store = store
        self.account = account
        self.providers = providers

    async def reconcile(self, targets: Sequence[NetworkConfig]) -> ReconcileReport:
        report = ReconcileReport()
        records = self.store.load()
        loaded = dict(records)

        try:
            for network in targets:
                rec = records.get(network.chain_id)
                if rec is not None:
                    logger.info("Already deployed on %s at %s", network.key, rec.address)
                    report.reused.append(network.key)
                else:
                    rec = await self._deploy(network)
                    records[network.chain_id] = rec
                    report.deployed.append(network.key)
                seed = await self._seed(network, rec)
                if seed is not None:
                    report.seed_tokens[network.chain_id] = seed

            for a, b in complete_graph(records):
                await self._connect(records[a], records[b])
                await self._connect(records[b], records[a])
                report.edges.append((a, b))
        except BridgeError as e:
            if records != loaded:
                self.store.save(records)
            if isinstance(e, DeploymentError):
                raise
            raise DeploymentError(f"Reconciliation failed: {e.message}") from e

        self.store.save(records)
        logger.info(
            "Reconciled %d network(s): %d deployed, %d reused, %d edge(s)",
            len(records), len(report.deployed), len(report.reused), len(report.edges),
        )
        return report

    async def _deploy(self, network: NetworkConfig) -> DeploymentRecord:
        logger.info("Deploying to %s (chain %d)", network.display_name, network.chain_id)
        client = self.providers.get(network)
        reported = await client.chain_id()
        if reported != network.chain_id:
            raise WrongNetworkError(
                f"Endpoint for {network.key} reports chain id {reported}, "
                f"expected {network.chain_id}"
            )
        address, tx_hash = await client.deploy(self.account.address)
        await client.wait_for_receipt(tx_hash)
        logger.info("Contract deployed to %s on %s", address, network.key)

        return DeploymentRecord(
            chain_id=network.chain_id,
            address=address,
            network=network.key,
            rpc_url=network.rpc_url,
            block_explorer=network.block_explorer,
            abi=list(ABI),
        )

    async def _seed(self, network: NetworkConfig, record: DeploymentRecord) -> Optional[int]:
        """Mint the deployer's seed token unless the contract has minted before."""
        contract = NFTContract(self.providers.get(network), record.address)
        if await contract.minted_count():
            return None
        seed, _ = await contract.mint(self.account.address)
        logger.info("Minted seed NFT %d on %s", seed, network.key)
        return seed

    async def _connect(self, local: DeploymentRecord, remote: DeploymentRecord) -> None:
        client = self.providers.get(_network_of(local))
        contract = NFTContract(client, local.address)
        await contract.set_peer(self.account.address, remote.chain_id, remote.address)
        logger.info("Set peer on %s: chain %d -> %s",
                    local.network, remote.chain_id, remote.address)
