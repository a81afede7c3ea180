"""
nftbridge — Ledger node

A ``LedgerNode`` stands in for one network: it hosts the bridge NFT
contract instances deployed on that chain, executes transactions against
them, keeps receipts, and accepts inbound cross-chain messages from the
messaging capability.  The JSON-RPC server (``nftbridge.rpc``) exposes a
node over HTTP; ``LocalLedgerClient`` talks to one in-process.

Transactions are applied immediately (one block per transaction).  A
contract precondition failure propagates to the caller synchronously and
records nothing, the same way a reverted call never reaches a block.
"""

import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from .contract import BridgeNFT
from .errors import BridgeError, ContractNotFoundError, UnauthorizedError
from .wallet import normalize_address

logger = logging.getLogger("nftbridge.node")

MUTATING_METHODS = frozenset({
    "mint", "bridge", "set_peer", "remove_peer", "pause", "unpause",
})

READ_ONLY_METHODS = frozenset({
    "name", "symbol", "owner", "paused", "total_supply", "minted_count", "balance_of",
    "owner_of", "exists", "tokens_by_owner", "token_metadata",
    "tokens_with_metadata", "token_uri", "peers", "is_trusted_peer",
})


class NodeConfig:
    """Configuration for a ledger node."""

    def __init__(self, **kwargs):
        self.chain_id: int = int(kwargs.get("chain_id", 1337))
        self.name: str = kwargs.get("name", f"chain-{self.chain_id}")
        self.host: str = kwargs.get("host", "127.0.0.1")
        self.port: int = kwargs.get("port", 8545)
        self.data_dir: Optional[str] = kwargs.get("data_dir", None)


@dataclass
class TransactionReceipt:
    tx_hash: str = ""
    block_number: int = 0
    sender: str = ""
    contract_address: str = ""
    method: str = ""
    status: int = 1
    result: Any = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TransactionReceipt":
        return TransactionReceipt(**data)


def _json_safe(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, tuple):
        return [_json_safe(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    return value


class LedgerNode:
    """Hosts bridge NFT contracts for a single chain."""

    def __init__(self, config: Optional[NodeConfig] = None, messenger: Any = None):
        self.config = config or NodeConfig()
        self._messenger = messenger
        self._contracts: Dict[str, BridgeNFT] = {}
        self._receipts: Dict[str, TransactionReceipt] = {}
        self._nonces: Dict[str, int] = {}
        self._block_number = 0
        self._lock = threading.RLock()

        if self.config.data_dir:
            self._load()

    @property
    def chain_id(self) -> int:
        return self.config.chain_id

    @property
    def block_number(self) -> int:
        return self._block_number

    def attach_messenger(self, messenger: Any) -> None:
        self._messenger = messenger
        for contract in self._contracts.values():
            contract.attach_messenger(messenger)

    def contract(self, address: str) -> BridgeNFT:
        contract = self._contracts.get(address.lower())
        if contract is None:
            raise ContractNotFoundError(f"No contract at {address} on chain {self.chain_id}")
        return contract

    @property
    def contract_addresses(self) -> List[str]:
        return list(self._contracts.keys())

    # ── Transactions ──────────────────────────────────────────────

    def _next_nonce(self, sender: str) -> int:
        nonce = self._nonces.get(sender, 0)
        self._nonces[sender] = nonce + 1
        return nonce

    def _tx_hash(self, sender: str, nonce: int, payload: str) -> str:
        raw = f"{self.chain_id}:{sender}:{nonce}:{payload}:{time.time()}"
        return "0x" + hashlib.sha256(raw.encode()).hexdigest()

    def _record(self, sender: str, address: str, method: str, result: Any,
                events: List[Dict[str, Any]], nonce: int) -> TransactionReceipt:
        self._block_number += 1
        receipt = TransactionReceipt(
            tx_hash=self._tx_hash(sender, nonce, f"{address}:{method}"),
            block_number=self._block_number,
            sender=sender,
            contract_address=address,
            method=method,
            status=1,
            result=_json_safe(result),
            events=events,
            timestamp=time.time(),
        )
        self._receipts[receipt.tx_hash] = receipt
        self._persist()
        return receipt

    def deploy(self, deployer: str, token_name: str = "Cross-Chain NFT",
               token_symbol: str = "XNFT") -> TransactionReceipt:
        """Deploy a fresh bridge NFT contract owned by *deployer*."""
        with self._lock:
            deployer = normalize_address(deployer)
            nonce = self._next_nonce(deployer)
            digest = hashlib.sha256(f"{self.chain_id}:{deployer}:{nonce}".encode()).digest()
            address = "0x" + digest[-20:].hex()
            contract = BridgeNFT(
                chain_id=self.chain_id,
                owner=deployer,
                token_name=token_name,
                token_symbol=token_symbol,
                messenger=self._messenger,
                address=address,
            )
            self._contracts[address] = contract
            logger.info("Chain %d: deployed contract %s", self.chain_id, address)
            return self._record(deployer, address, "deploy", address, [], nonce)

    def transact(self, sender: str, address: str, method: str,
                 *args: Any) -> TransactionReceipt:
        """Execute a state-changing contract method as *sender*."""
        if method not in MUTATING_METHODS:
            raise UnauthorizedError(f"'{method}' is not a transaction method")
        with self._lock:
            sender = normalize_address(sender)
            contract = self.contract(address)
            before = len(contract.events)
            result = getattr(contract, method)(sender, *args)
            nonce = self._next_nonce(sender)
            events = [e.to_dict() for e in contract.events[before:]]
            return self._record(sender, contract.address, method, result, events, nonce)

    def call(self, address: str, method: str, *args: Any) -> Any:
        """Read-only contract call."""
        if method not in READ_ONLY_METHODS:
            raise UnauthorizedError(f"'{method}' is not a read-only method")
        with self._lock:
            return _json_safe(getattr(self.contract(address), method)(*args))

    def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        return self._receipts.get(tx_hash)

    # ── Inbound messages ──────────────────────────────────────────

    def handle_message(self, message: Any) -> Tuple[bool, str]:
        """Endpoint handler registered with the messaging capability."""
        with self._lock:
            contract = self._contracts.get((message.dest_address or "").lower())
            if contract is None:
                return False, f"No contract at {message.dest_address} on chain {self.chain_id}"
            try:
                ok, reason = contract.receive_message(message)
            except BridgeError as e:
                ok, reason = False, e.message
            if ok:
                self._block_number += 1
                self._persist()
            return ok, reason

    # ── Persistence ───────────────────────────────────────────────

    def _state_path(self) -> str:
        return os.path.join(self.config.data_dir, f"chain-{self.chain_id}.json")

    def _persist(self) -> None:
        if not self.config.data_dir:
            return
        os.makedirs(self.config.data_dir, exist_ok=True)
        state = {
            "chain_id": self.chain_id,
            "block_number": self._block_number,
            "nonces": self._nonces,
            "contracts": {a: c.to_dict() for a, c in self._contracts.items()},
            "receipts": {h: r.to_dict() for h, r in self._receipts.items()},
        }
        tmp = self._state_path() + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(state, f)
        os.replace(tmp, self._state_path())

    def _load(self) -> None:
        path = self._state_path()
        if not os.path.exists(path):
            return
        with open(path, "r", encoding="utf-8") as f:
            state = json.load(f)
        self._block_number = state.get("block_number", 0)
        self._nonces = state.get("nonces", {})
        self._contracts = {
            a: BridgeNFT.from_dict(c, messenger=self._messenger)
            for a, c in state.get("contracts", {}).items()
        }
        self._receipts = {
            h: TransactionReceipt.from_dict(r)
            for h, r in state.get("receipts", {}).items()
        }
        logger.info("Chain %d: restored %d contract(s) from %s",
                    self.chain_id, len(self._contracts), path)

    def get_node_info(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "name": self.config.name,
            "block_number": self._block_number,
            "contracts": self.contract_addresses,
            "transactions": len(self._receipts),
        }
