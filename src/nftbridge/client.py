"""
nftbridge — Ledger clients

``LedgerClient`` is the async interface every caller above the ledger
uses: the reconciler, the orchestrator, the wallet session and the CLI.
Two implementations:

  - ``LocalLedgerClient``  wraps a ``LedgerNode`` living in this process
    (tests, the devnet).
  - ``RPCLedgerClient``    speaks JSON-RPC to a node over HTTP.

``NFTContract`` is a typed handle on one deployed bridge contract, built
on top of either client.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from .contract import TokenMetadata
from .errors import ReceiptTimeoutError, TokenNotFoundError
from .node import LedgerNode, TransactionReceipt
from .rpc import RPCClient

logger = logging.getLogger("nftbridge.client")


class LedgerClient(abc.ABC):
    """Async access to one ledger."""

    @abc.abstractmethod
    async def chain_id(self) -> int: ...

    @abc.abstractmethod
    async def block_number(self) -> int: ...

    @abc.abstractmethod
    async def deploy(self, deployer: str, token_name: str = "Cross-Chain NFT",
                     token_symbol: str = "XNFT") -> Tuple[str, str]:
        """Deploy a contract; returns ``(address, tx_hash)``."""

    @abc.abstractmethod
    async def send_transaction(self, sender: str, address: str, method: str,
                               *args: Any) -> str:
        """Submit a state-changing call; returns the transaction hash."""

    @abc.abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]: ...

    @abc.abstractmethod
    async def call(self, address: str, method: str, *args: Any) -> Any: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 60.0,
                               interval: float = 0.5) -> TransactionReceipt:
        """Poll until *tx_hash* has a receipt or *timeout* elapses."""
        deadline = time.monotonic() + timeout
        while True:
            receipt = await self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                raise ReceiptTimeoutError(
                    f"No receipt for {tx_hash} after {timeout:.0f}s"
                )
            await asyncio.sleep(interval)

    async def close(self) -> None:
        pass


class LocalLedgerClient(LedgerClient):
    """Client bound to an in-process ``LedgerNode``."""

    def __init__(self, node: LedgerNode):
        self.node = node

    async def chain_id(self) -> int:
        return self.node.chain_id

    async def block_number(self) -> int:
        return self.node.block_number

    async def deploy(self, deployer, token_name="Cross-Chain NFT", token_symbol="XNFT"):
        receipt = self.node.deploy(deployer, token_name, token_symbol)
        return receipt.result, receipt.tx_hash

    async def send_transaction(self, sender, address, method, *args):
        return self.node.transact(sender, address, method, *args).tx_hash

    async def get_receipt(self, tx_hash):
        return self.node.get_receipt(tx_hash)

    async def call(self, address, method, *args):
        return self.node.call(address, method, *args)


class RPCLedgerClient(LedgerClient):
    """Client for a node reachable over JSON-RPC."""

    def __init__(self, url: str, timeout: float = 15.0):
        self.url = url
        self.rpc = RPCClient(url, timeout=timeout)

    async def chain_id(self) -> int:
        return int(await self.rpc.request("nft_chainId"))

    async def block_number(self) -> int:
        return int(await self.rpc.request("nft_blockNumber"))

    async def deploy(self, deployer, token_name="Cross-Chain NFT", token_symbol="XNFT"):
        receipt = await self.rpc.request("nft_deploy", {
            "from": deployer, "name": token_name, "symbol": token_symbol,
        })
        return receipt["result"], receipt["tx_hash"]

    async def send_transaction(self, sender, address, method, *args):
        receipt = await self.rpc.request("nft_sendTransaction", {
            "from": sender, "to": address, "method": method, "args": list(args),
        })
        return receipt["tx_hash"]

    async def get_receipt(self, tx_hash):
        data = await self.rpc.request("nft_getTransactionReceipt", [tx_hash])
        return TransactionReceipt.from_dict(data) if data else None

    async def call(self, address, method, *args):
        return await self.rpc.request("nft_call", {
            "to": address, "method": method, "args": list(args),
        })

    async def close(self) -> None:
        await self.rpc.close()


class NFTContract:
    """Typed async handle on a deployed bridge contract."""

    def __init__(self, client: LedgerClient, address: str):
        self.client = client
        self.address = address

    # ── transactions ──────────────────────────────────────────────

    async def _transact(self, sender: str, method: str, *args: Any) -> TransactionReceipt:
        tx_hash = await self.client.send_transaction(sender, self.address, method, *args)
        return await self.client.wait_for_receipt(tx_hash)

    async def mint(self, sender: str) -> Tuple[int, str]:
        """Mint one token to *sender*; returns ``(token_id, tx_hash)``."""
        receipt = await self._transact(sender, "mint")
        return int(receipt.result), receipt.tx_hash

    async def bridge(self, sender: str, dest_chain_id: int, recipient: str,
                     token_id: int) -> str:
        """Submit a bridge transaction and return its hash without waiting."""
        return await self.client.send_transaction(
            sender, self.address, "bridge", dest_chain_id, recipient, token_id,
        )

    async def set_peer(self, sender: str, chain_id: int, peer: str) -> TransactionReceipt:
        return await self._transact(sender, "set_peer", chain_id, peer)

    async def remove_peer(self, sender: str, chain_id: int) -> TransactionReceipt:
        return await self._transact(sender, "remove_peer", chain_id)

    async def pause(self, sender: str) -> TransactionReceipt:
        return await self._transact(sender, "pause")

    async def unpause(self, sender: str) -> TransactionReceipt:
        return await self._transact(sender, "unpause")

    # ── views ─────────────────────────────────────────────────────

    async def name(self) -> str:
        return await self.client.call(self.address, "name")

    async def symbol(self) -> str:
        return await self.client.call(self.address, "symbol")

    async def owner(self) -> str:
        return await self.client.call(self.address, "owner")

    async def total_supply(self) -> int:
        return int(await self.client.call(self.address, "total_supply"))

    async def minted_count(self) -> int:
        return int(await self.client.call(self.address, "minted_count"))

    async def balance_of(self, owner: str) -> int:
        return int(await self.client.call(self.address, "balance_of", owner))

    async def owner_of(self, token_id: int) -> Optional[str]:
        """Current owner here, or ``None`` if the id is not active on this chain."""
        try:
            return await self.client.call(self.address, "owner_of", token_id)
        except TokenNotFoundError:
            return None

    async def tokens_by_owner(self, owner: str) -> List[int]:
        return [int(t) for t in await self.client.call(self.address, "tokens_by_owner", owner)]

    async def token_metadata(self, token_id: int) -> TokenMetadata:
        data = await self.client.call(self.address, "token_metadata", token_id)
        return TokenMetadata.from_dict(data)

    async def tokens_with_metadata(self, owner: str) -> List[Tuple[int, TokenMetadata]]:
        ids, metas = await self.client.call(self.address, "tokens_with_metadata", owner)
        return [(int(t), TokenMetadata.from_dict(m)) for t, m in zip(ids, metas)]

    async def token_uri(self, token_id: int) -> str:
        return await self.client.call(self.address, "token_uri", token_id)

    async def peers(self) -> Dict[int, str]:
        raw = await self.client.call(self.address, "peers")
        return {int(k): v for k, v in raw.items()}

    async def is_trusted_peer(self, chain_id: int) -> bool:
        return bool(await self.client.call(self.address, "is_trusted_peer", chain_id))
