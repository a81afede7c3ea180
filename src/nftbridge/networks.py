"""
Network descriptors.

A ``NetworkConfig`` names one ledger: its key (``avalanche-testnet``),
human name, chain id, RPC endpoint and block explorer.  The built-in
catalogue covers the public testnets the bridge is usually deployed to;
a JSON network file extends or overrides it::

    {
      "avalanche-testnet": {"chainId": 43113, "rpcUrl": "http://127.0.0.1:9650"},
      "local-b": {"name": "Local B", "chainId": 1338, "rpcUrl": "http://127.0.0.1:8546"}
    }

Once contracts are deployed the deployment records are the source of
truth; ``networks_from_deployments`` rebuilds the catalogue from them.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, Mapping, Optional

from .errors import ConfigError, UnknownNetworkError

logger = logging.getLogger("nftbridge.networks")

NETWORKS_ENV = "NFTBRIDGE_NETWORKS"


@dataclass(frozen=True)
class NetworkConfig:
    """Descriptor of one target network."""

    key: str
    chain_id: int
    rpc_url: str
    name: str = ""
    block_explorer: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.key

    def tx_url(self, tx_hash: str) -> str:
        if not self.block_explorer:
            return ""
        return f"{self.block_explorer.rstrip('/')}/tx/{tx_hash}"

    def address_url(self, address: str) -> str:
        if not self.block_explorer:
            return ""
        return f"{self.block_explorer.rstrip('/')}/address/{address}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(key: str, data: Mapping[str, Any]) -> "NetworkConfig":
        try:
            chain_id = int(data.get("chainId", data.get("chain_id")))
        except (TypeError, ValueError):
            raise ConfigError(f"Network '{key}' has no valid chainId")
        return NetworkConfig(
            key=key,
            chain_id=chain_id,
            rpc_url=data.get("rpcUrl", data.get("rpc_url", "")),
            name=data.get("name", key),
            block_explorer=data.get("blockExplorer", data.get("block_explorer", "")),
        )


DEFAULT_NETWORKS: Dict[str, NetworkConfig] = {
    n.key: n for n in (
        NetworkConfig(
            key="avalanche-testnet",
            name="Avalanche Fuji Testnet",
            chain_id=43113,
            rpc_url="https://api.avax-test.network/ext/bc/C/rpc",
            block_explorer="https://testnet.snowtrace.io",
        ),
        NetworkConfig(
            key="base-testnet",
            name="Base Sepolia Testnet",
            chain_id=84532,
            rpc_url="https://sepolia.base.org",
            block_explorer="https://sepolia.basescan.org",
        ),
        NetworkConfig(
            key="ethereum-sepolia",
            name="Ethereum Sepolia",
            chain_id=11155111,
            rpc_url="https://rpc.sepolia.org",
            block_explorer="https://sepolia.etherscan.io",
        ),
        NetworkConfig(
            key="polygon-amoy",
            name="Polygon Amoy Testnet",
            chain_id=80002,
            rpc_url="https://rpc-amoy.polygon.technology",
            block_explorer="https://amoy.polygonscan.com",
        ),
        NetworkConfig(
            key="arbitrum-sepolia",
            name="Arbitrum Sepolia",
            chain_id=421614,
            rpc_url="https://sepolia-rollup.arbitrum.io/rpc",
            block_explorer="https://sepolia.arbiscan.io",
        ),
    )
}


class NetworkRegistry:
    """Lookup of networks by key or chain id."""

    def __init__(self, networks: Optional[Iterable[NetworkConfig]] = None):
        self._by_key: Dict[str, NetworkConfig] = {}
        self._by_chain: Dict[int, NetworkConfig] = {}
        for net in networks or ():
            self.add(net)

    def add(self, network: NetworkConfig) -> None:
        existing = self._by_chain.get(network.chain_id)
        if existing is not None and existing.key != network.key:
            raise ConfigError(
                f"Chain id {network.chain_id} claimed by both "
                f"'{existing.key}' and '{network.key}'"
            )
        old = self._by_key.get(network.key)
        if old is not None:
            self._by_chain.pop(old.chain_id, None)
        self._by_key[network.key] = network
        self._by_chain[network.chain_id] = network

    def get(self, key: str) -> NetworkConfig:
        net = self._by_key.get(key)
        if net is None:
            raise UnknownNetworkError(f"Network {key} not found")
        return net

    def by_chain_id(self, chain_id: int) -> Optional[NetworkConfig]:
        return self._by_chain.get(int(chain_id))

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    def __iter__(self):
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)

    @property
    def keys(self):
        return list(self._by_key.keys())


def load_network_file(path: str) -> Dict[str, NetworkConfig]:
    """Read a JSON network file (mapping of key -> descriptor)."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Network file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Network file {path} is not valid JSON: {e}")
    if not isinstance(raw, dict):
        raise ConfigError(f"Network file {path} must contain a JSON object")
    return {key: NetworkConfig.from_dict(key, data) for key, data in raw.items()}


def load_networks(path: Optional[str] = None) -> NetworkRegistry:
    """Built-in catalogue, extended by *path* (or ``$NFTBRIDGE_NETWORKS``)."""
    registry = NetworkRegistry(DEFAULT_NETWORKS.values())
    path = path or os.environ.get(NETWORKS_ENV)
    if path:
        overrides = load_network_file(path)
        for net in overrides.values():
            registry.add(net)
        logger.info("Loaded %d network(s) from %s", len(overrides), path)
    return registry


def networks_from_deployments(records: Mapping[int, Any]) -> NetworkRegistry:
    """Rebuild the network catalogue from deployment records."""
    registry = NetworkRegistry()
    for chain_id, rec in sorted(records.items()):
        registry.add(NetworkConfig(
            key=rec.network,
            name=rec.network,
            chain_id=int(chain_id),
            rpc_url=rec.rpc_url,
            block_explorer=rec.block_explorer,
        ))
    logger.debug("Loaded %d networks from deployments", len(registry))
    return registry
