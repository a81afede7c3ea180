"""
Process-wide cache of ledger clients.

One client per chain id, created on first use from the network's RPC
URL and kept until ``reset_providers()``.  In-process clients (tests,
the devnet) are installed with ``register_provider``.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List

from .client import LedgerClient, RPCLedgerClient
from .errors import ConfigError
from .networks import NetworkConfig

logger = logging.getLogger("nftbridge.provider")


class ProviderCache:
    def __init__(self):
        self._clients: Dict[int, LedgerClient] = {}
        self._lock = threading.Lock()

    def get(self, network: NetworkConfig) -> LedgerClient:
        with self._lock:
            client = self._clients.get(network.chain_id)
            if client is None:
                if not network.rpc_url:
                    raise ConfigError(f"Network {network.key} has no RPC URL")
                client = RPCLedgerClient(network.rpc_url)
                self._clients[network.chain_id] = client
                logger.debug("Created provider for chain %d at %s",
                             network.chain_id, network.rpc_url)
            return client

    def register(self, chain_id: int, client: LedgerClient) -> None:
        with self._lock:
            self._clients[int(chain_id)] = client

    def chain_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._clients)

    def reset(self) -> List[LedgerClient]:
        """Forget every client; returns them so the caller can close them."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        return clients

    async def close_all(self) -> None:
        """Close open connections; clients stay cached and reconnect on use."""
        with self._lock:
            clients = list(self._clients.values())
        for client in clients:
            await client.close()


_providers = ProviderCache()


def providers() -> ProviderCache:
    return _providers


def get_provider(network: NetworkConfig) -> LedgerClient:
    return _providers.get(network)


def register_provider(chain_id: int, client: LedgerClient) -> None:
    _providers.register(chain_id, client)


def reset_providers() -> None:
    _providers.reset()
