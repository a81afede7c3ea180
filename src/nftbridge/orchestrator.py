"""
nftbridge — Bridge orchestrator

Drives a single bridge request from the caller's side:

  1. check preconditions (known networks, source != destination,
     well-formed recipient defaulting to the caller, caller owns the
     token on the source network);
  2. make sure the wallet points at the source network;
  3. submit the burn-and-send transaction            -> ``submitted``
  4. wait for its receipt                            -> ``source-confirmed``
  5. watch the destination ledger until the recipient owns the id
                                                     -> ``destination-confirmed``
     or the watch window closes                      -> ``timed-out``
     or the caller stops watching                   -> ``cancelled``

``timed-out`` and ``cancelled`` describe the observation only; the burn
already happened and the mint may still land later.  Neither is raised
as an error.

Example::

    orch = BridgeOrchestrator(wallet, DeploymentStore(), providers())
    op = await orch.bridge("avalanche-testnet", "base-testnet", 431130000)
    print(op.status)   # BridgeStatus.DESTINATION_CONFIRMED
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cache import ListingCache
from .client import NFTContract
from .contract import TokenMetadata
from .deployments import DeploymentRecord, DeploymentStore
from .errors import (
    BridgeError,
    ConnectivityError,
    NotOwnerError,
    SameNetworkError,
    TokenNotFoundError,
    UnknownNetworkError,
    UntrustedPeerError,
)
from .networks import NetworkConfig, networks_from_deployments
from .wallet import WalletSession, require_recipient, same_address

logger = logging.getLogger("nftbridge.orchestrator")


class BridgeStatus(str, Enum):
    SUBMITTED = "submitted"
    SOURCE_CONFIRMED = "source-confirmed"
    DESTINATION_CONFIRMED = "destination-confirmed"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BridgeStatus.DESTINATION_CONFIRMED,
                        BridgeStatus.TIMED_OUT,
                        BridgeStatus.CANCELLED)


@dataclass
class WatchConfig:
    """Completion watch timing, in seconds."""

    poll_interval: float = 5.0
    initial_delay: float = 10.0
    timeout: float = 300.0
    receipt_timeout: float = 120.0


class CancellationToken:
    """External stop signal for a completion watch."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout*; returns True if cancelled meanwhile."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(timeout, 0))
        except asyncio.TimeoutError:
            return False
        return True


@dataclass
class BridgeOperation:
    source_chain_id: int
    dest_chain_id: int
    token_id: int
    recipient: str
    tx_hash: str = ""
    status: Optional[BridgeStatus] = None
    started_at: float = field(default_factory=time.time)
    source_confirmed_at: Optional[float] = None
    finished_at: Optional[float] = None
    error: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceChainId": self.source_chain_id,
            "destChainId": self.dest_chain_id,
            "tokenId": self.token_id,
            "recipient": self.recipient,
            "txHash": self.tx_hash,
            "status": self.status.value if self.status else None,
            "startedAt": self.started_at,
            "sourceConfirmedAt": self.source_confirmed_at,
            "finishedAt": self.finished_at,
            "error": self.error,
        }


@dataclass
class NFTListing:
    token_id: int
    name: str
    description: str = ""
    image: str = ""
    origin_chain_id: Optional[int] = None
    minted_at: Optional[int] = None

    @property
    def origin_label(self) -> str:
        return str(self.origin_chain_id) if self.origin_chain_id is not None else "Unknown"

    @property
    def minted_label(self) -> str:
        if not self.minted_at:
            return "Unknown"
        return datetime.fromtimestamp(self.minted_at, tz=timezone.utc).isoformat()

    @classmethod
    def from_metadata(cls, token_id: int, meta: TokenMetadata) -> "NFTListing":
        return cls(
            token_id=token_id,
            name=meta.name,
            description=meta.description,
            image=meta.image,
            origin_chain_id=meta.origin_chain_id,
            minted_at=meta.minted_at,
        )

    @classmethod
    def placeholder(cls, token_id: int) -> "NFTListing":
        return cls(token_id=token_id, name=f"NFT #{token_id}")


StatusCallback = Callable[[BridgeOperation], None]


class BridgeOrchestrator:
    """Client-side driver for bridge operations.

    ``providers`` is anything with ``get(network) -> LedgerClient``.
    """

    def __init__(
        self,
        wallet: WalletSession,
        store: DeploymentStore,
        providers: Any,
        cache: Optional[ListingCache] = None,
        watch: Optional[WatchConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.wallet = wallet
        self.store = store
        self.providers = providers
        self.cache = cache or ListingCache()
        self.watch = watch or WatchConfig()
        self._clock = clock
        self._callbacks: List[StatusCallback] = []

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, network_key: str) -> Tuple[NetworkConfig, DeploymentRecord]:
        records = self.store.load()
        registry = networks_from_deployments(records)
        if network_key not in registry:
            raise UnknownNetworkError(f"Network {network_key} not found in deployments")
        net = registry.get(network_key)
        return net, records[net.chain_id]

    def contract_for(self, network_key: str) -> Tuple[NetworkConfig, NFTContract]:
        net, rec = self.resolve(network_key)
        return net, NFTContract(self.providers.get(net), rec.address)

    def tx_url(self, network_key: str, tx_hash: str) -> str:
        return self.resolve(network_key)[0].tx_url(tx_hash)

    def address_url(self, network_key: str, address: str) -> str:
        return self.resolve(network_key)[0].address_url(address)

    # ------------------------------------------------------------------
    # Status notifications
    # ------------------------------------------------------------------

    def on_status(self, callback: StatusCallback) -> None:
        self._callbacks.append(callback)

    def _set_status(self, op: BridgeOperation, status: BridgeStatus) -> None:
        op.status = status
        now = time.time()
        if status is BridgeStatus.SOURCE_CONFIRMED:
            op.source_confirmed_at = now
        elif status.is_terminal:
            op.finished_at = now
        logger.info("Bridge of token %d (%d -> %d): %s",
                    op.token_id, op.source_chain_id, op.dest_chain_id, status.value)
        for cb in list(self._callbacks):
            try:
                cb(op)
            except Exception:
                logger.exception("Status callback failed")

    # ------------------------------------------------------------------
    # Listing / minting
    # ------------------------------------------------------------------

    async def list_nfts(self, network_key: str, owner: Optional[str] = None,
                        force: bool = False) -> List[NFTListing]:
        net, contract = self.contract_for(network_key)
        owner = require_recipient(owner) if owner else self.wallet.address

        async def load() -> List[NFTListing]:
            try:
                pairs = await contract.tokens_with_metadata(owner)
                return [NFTListing.from_metadata(tid, meta) for tid, meta in pairs]
            except ConnectivityError:
                raise
            except BridgeError as e:
                logger.debug("Batched listing unavailable on %s (%s), "
                             "falling back to per-token queries", net.key, e)
            listings = []
            for tid in await contract.tokens_by_owner(owner):
                try:
                    listings.append(NFTListing.from_metadata(tid, await contract.token_metadata(tid)))
                except ConnectivityError:
                    raise
                except BridgeError as e:
                    logger.warning("Failed to fetch metadata for token %d: %s", tid, e)
                    listings.append(NFTListing.placeholder(tid))
            return listings

        return await self.cache.fetch(net.chain_id, owner, load, force=force)

    async def mint(self, network_key: str) -> Tuple[int, str]:
        net, contract = self.contract_for(network_key)
        await self.wallet.ensure_network(net)
        token_id, tx_hash = await contract.mint(self.wallet.address)
        self.cache.invalidate(net.chain_id)
        return token_id, tx_hash

    # ------------------------------------------------------------------
    # Bridge
    # ------------------------------------------------------------------

    async def bridge(
        self,
        source: str,
        dest: str,
        token_id: int,
        recipient: Optional[str] = None,
        wait: bool = True,
        cancel: Optional[CancellationToken] = None,
    ) -> BridgeOperation:
        """Bridge *token_id* from *source* to *dest*.

        Precondition and connectivity failures raise before anything is
        submitted.  Once submitted, the returned operation carries the
        outcome as its status.  If the source receipt cannot be
        confirmed, the error raised carries the submitted operation as
        ``error.operation``.
        """
        src_net, src_rec = self.resolve(source)
        dst_net, _ = self.resolve(dest)
        if src_net.chain_id == dst_net.chain_id:
            raise SameNetworkError("Source and destination networks must be different")
        recipient = require_recipient(recipient) if recipient else self.wallet.address
        token_id = int(token_id)

        await self.wallet.ensure_network(src_net)
        contract = NFTContract(self.providers.get(src_net), src_rec.address)

        owner = await contract.owner_of(token_id)
        if owner is None:
            raise TokenNotFoundError(f"NFT #{token_id} does not exist on {src_net.key}")
        if not same_address(owner, self.wallet.address):
            raise NotOwnerError(f"You don't own NFT #{token_id} on {src_net.key}")
        if not await contract.is_trusted_peer(dst_net.chain_id):
            raise UntrustedPeerError(
                f"{dst_net.key} is not a trusted peer of {src_net.key}"
            )

        logger.info("Bridging NFT #%d from %s to %s (recipient %s)",
                    token_id, src_net.key, dst_net.key, recipient)
        tx_hash = await contract.bridge(self.wallet.address, dst_net.chain_id,
                                        recipient, token_id)
        op = BridgeOperation(
            source_chain_id=src_net.chain_id,
            dest_chain_id=dst_net.chain_id,
            token_id=token_id,
            recipient=recipient,
            tx_hash=tx_hash,
        )
        self._set_status(op, BridgeStatus.SUBMITTED)

        try:
            await contract.client.wait_for_receipt(tx_hash, timeout=self.watch.receipt_timeout)
        except BridgeError as e:
            op.error = e.message
            e.operation = op
            logger.warning("Bridge transaction %s submitted but not confirmed: %s",
                           tx_hash, e.message)
            raise
        self.cache.invalidate(src_net.chain_id)
        self._set_status(op, BridgeStatus.SOURCE_CONFIRMED)

        if wait:
            await self.watch_completion(op, cancel=cancel)
        return op

    async def watch_completion(self, op: BridgeOperation,
                               cancel: Optional[CancellationToken] = None) -> BridgeOperation:
        """Poll the destination until the recipient owns the token.

        Ends in ``destination-confirmed``, ``timed-out`` or ``cancelled``.
        Cancelling the surrounding task also ends the watch as
        ``cancelled`` before the ``CancelledError`` propagates.
        """
        cancel = cancel or CancellationToken()
        dst_net = networks_from_deployments(self.store.load()).by_chain_id(op.dest_chain_id)
        if dst_net is None:
            raise UnknownNetworkError(f"No deployment for chain {op.dest_chain_id}")
        _, contract = self.contract_for(dst_net.key)
        cfg = self.watch
        started = self._clock()

        try:
            if await cancel.wait(cfg.initial_delay):
                self._set_status(op, BridgeStatus.CANCELLED)
                return op

            while True:
                try:
                    owner = await contract.owner_of(op.token_id)
                except ConnectivityError as e:
                    logger.warning("Polling %s failed: %s", dst_net.key, e)
                    owner = None
                if cancel.cancelled:
                    self._set_status(op, BridgeStatus.CANCELLED)
                    return op
                if same_address(owner, op.recipient):
                    self.cache.invalidate(op.dest_chain_id)
                    self._set_status(op, BridgeStatus.DESTINATION_CONFIRMED)
                    return op

                elapsed = self._clock() - started
                logger.debug("Token %d not yet on %s (%.0fs elapsed)",
                             op.token_id, dst_net.key, elapsed)
                if elapsed >= cfg.timeout:
                    logger.warning(
                        "Token %d not observed on %s after %.0fs; "
                        "it may still be received later",
                        op.token_id, dst_net.key, elapsed,
                    )
                    self._set_status(op, BridgeStatus.TIMED_OUT)
                    return op

                if await cancel.wait(cfg.poll_interval):
                    self._set_status(op, BridgeStatus.CANCELLED)
                    return op
        except asyncio.CancelledError:
            self._set_status(op, BridgeStatus.CANCELLED)
            raise
