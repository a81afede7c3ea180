"""
nftbridge — Local multi-network devnet

One ``LedgerNode`` per network, all joined by a single in-process
``MessageRouter``, each optionally served over JSON-RPC on the port of
its ``rpc_url``.  The relay loop delivers bridge messages once the
configured latency has elapsed.

Usage::

    devnet = Devnet([net_a, net_b], latency=5.0)
    await devnet.start()          # RPC servers up
    await devnet.run(stop_event)  # relay until stopped
    await devnet.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from .client import LocalLedgerClient
from .errors import ConfigError
from .messaging import MessageRouter
from .networks import NetworkConfig
from .node import LedgerNode, NodeConfig
from .rpc import RPCServer

logger = logging.getLogger("nftbridge.devnet")


def _host_port(rpc_url: str) -> tuple:
    parsed = urlparse(rpc_url)
    if not parsed.hostname or not parsed.port:
        raise ConfigError(f"Devnet RPC URL needs an explicit host and port: {rpc_url!r}")
    return parsed.hostname, parsed.port


class Devnet:
    def __init__(self, networks: Sequence[NetworkConfig], latency: float = 0.0,
                 data_dir: Optional[str] = None):
        if len({n.chain_id for n in networks}) != len(networks):
            raise ConfigError("Devnet networks must have distinct chain ids")
        self.networks = list(networks)
        self.router = MessageRouter(latency=latency)
        self.nodes: Dict[int, LedgerNode] = {}
        self.servers: Dict[int, RPCServer] = {}

        for net in self.networks:
            node = LedgerNode(NodeConfig(chain_id=net.chain_id, name=net.key,
                                         data_dir=data_dir))
            self.router.register_endpoint(net.chain_id, node.handle_message)
            node.attach_messenger(self.router.messenger_for(net.chain_id))
            self.nodes[net.chain_id] = node

    def node(self, chain_id: int) -> LedgerNode:
        return self.nodes[chain_id]

    def local_clients(self) -> Dict[int, LocalLedgerClient]:
        return {cid: LocalLedgerClient(node) for cid, node in self.nodes.items()}

    def register_providers(self, cache: Any) -> None:
        """Install in-process clients for every devnet chain into *cache*."""
        for cid, client in self.local_clients().items():
            cache.register(cid, client)

    async def start(self) -> None:
        """Serve every node over JSON-RPC."""
        for net in self.networks:
            host, port = _host_port(net.rpc_url)
            server = RPCServer(self.nodes[net.chain_id], host=host, port=port,
                               router=self.router)
            await server.start()
            self.servers[net.chain_id] = server

    async def stop(self) -> None:
        for server in self.servers.values():
            await server.stop()
        self.servers.clear()

    def relay_once(self) -> int:
        """Deliver every due message now; returns how many were handed over."""
        return len(self.router.deliver_pending())

    async def run(self, stop_event: Optional[asyncio.Event] = None,
                  interval: float = 1.0) -> None:
        await self.router.run(interval=interval, stop_event=stop_event)

    def info(self) -> List[Dict[str, Any]]:
        return [
            dict(self.nodes[n.chain_id].get_node_info(), rpc_url=n.rpc_url)
            for n in self.networks
        ]
