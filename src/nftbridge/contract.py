"""
The bridge NFT ledger contract.

One ``BridgeNFT`` instance lives on every network and owns the
authoritative token state there.  Per token id the state machine is::

    Nonexistent -> Active(chain) -> InFlight -> Active(other chain) -> ...

``bridge`` is the only way ownership moves between networks: it burns
the token here and hands ``{recipient, tokenId, metadata}`` to the
messaging capability, addressed to the trusted peer contract on the
destination chain.  The peer's inbound handler mints the *same* id with
the *same* metadata to the recipient.  While the message is in flight
the token is owned nowhere.

Token ids are partitioned by origin network
(``origin_chain_id * 10**4 + sequence``) so every network can mint
without coordinating with the others.

Usage::

    nft = BridgeNFT(chain_id=43113, owner=deployer, messenger=messenger)
    nft.set_peer(deployer, 84532, peer_address)
    token_id = nft.mint(alice)                 # 431130000
    nft.bridge(alice, 84532, alice, token_id)  # burned here, message sent
"""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .errors import (
    ContractPausedError,
    MessagingError,
    NamespaceExhaustedError,
    NotOwnerError,
    SameNetworkError,
    TokenExistsError,
    TokenNotFoundError,
    UnauthorizedError,
    UntrustedPeerError,
)
from .events import (
    BridgedEvent,
    ContractEvent,
    MintedEvent,
    PeerSetEvent,
    ReceivedEvent,
    TransferEvent,
)
from .wallet import ZERO_ADDRESS, normalize_address, require_recipient, same_address

logger = logging.getLogger("nftbridge.contract")

TOKEN_ID_MULTIPLIER = 10 ** 4

# Published in deployment records; readers use it to know what they can call.
ABI: List[str] = [
    "function name() view returns (string)",
    "function symbol() view returns (string)",
    "function balanceOf(address) view returns (uint256)",
    "function ownerOf(uint256) view returns (address)",
    "function tokenURI(uint256) view returns (string)",
    "function totalSupply() view returns (uint256)",
    "function mint() returns (uint256)",
    "function getTokensByOwner(address) view returns (uint256[])",
    "function getTokensWithMetadata(address) view returns (uint256[], tuple(string,string,string,uint256,uint256)[])",
    "function getTokenMetadata(uint256) view returns (tuple(string,string,string,uint256,uint256))",
    "function bridge(uint destChainId, address recipient, uint nftId) returns ()",
    "function setPeer(uint chainId, address peer) returns ()",
    "function peers() view returns (tuple(uint256,address)[])",
    "function pause() returns ()",
    "function unpause() returns ()",
    "event Transfer(address indexed from, address indexed to, uint256 tokenId)",
    "event NFTMinted(address indexed owner, uint256 tokenId)",
    "event NFTBridged(address indexed owner, uint256 tokenId, uint256 destChainId, address recipient)",
    "event NFTReceived(address indexed recipient, uint256 tokenId, uint256 sourceChainId)",
    "event PeerSet(uint256 chainId, address peer)",
]

_SVG_TEMPLATE = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="350" height="350">'
    '<rect width="100%" height="100%" fill="#{color}"/>'
    '<text x="50%" y="45%" text-anchor="middle" fill="white" font-size="24">#{token_id}</text>'
    '<text x="50%" y="60%" text-anchor="middle" fill="white" font-size="14">chain {chain_id}</text>'
    '</svg>'
)


@dataclass(frozen=True)
class TokenMetadata:
    """Immutable token metadata, carried verbatim through every hop."""

    name: str
    description: str
    image: str
    origin_chain_id: int
    minted_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "image": self.image,
            "originChainId": self.origin_chain_id,
            "mintedAt": self.minted_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "TokenMetadata":
        return TokenMetadata(
            name=str(data["name"]),
            description=str(data["description"]),
            image=str(data["image"]),
            origin_chain_id=int(data["originChainId"]),
            minted_at=int(data["mintedAt"]),
        )


def make_token_id(chain_id: int, sequence: int) -> int:
    return chain_id * TOKEN_ID_MULTIPLIER + sequence


def origin_chain_of(token_id: int) -> int:
    return token_id // TOKEN_ID_MULTIPLIER


def encode_payload(recipient: str, token_id: int, metadata: TokenMetadata) -> str:
    return json.dumps({
        "recipient": recipient,
        "tokenId": token_id,
        "metadata": metadata.to_dict(),
    }, sort_keys=True)


def decode_payload(payload: str) -> Tuple[str, int, TokenMetadata]:
    data = json.loads(payload)
    return (
        normalize_address(data["recipient"]),
        int(data["tokenId"]),
        TokenMetadata.from_dict(data["metadata"]),
    )


class BridgeNFT:
    """Cross-chain NFT contract with burn-and-mint bridging."""

    def __init__(
        self,
        chain_id: int,
        owner: str,
        token_name: str = "Cross-Chain NFT",
        token_symbol: str = "XNFT",
        messenger: Any = None,
        address: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self.chain_id = chain_id
        self.address = address
        self._name = token_name
        self._symbol = token_symbol
        self._owner = normalize_address(owner)
        self._messenger = messenger
        self._clock = clock

        # token_id -> owner address
        self._owners: Dict[int, str] = {}
        # owner -> token count
        self._balances: Dict[str, int] = {}
        # token_id -> metadata (only for tokens active here)
        self._metadata: Dict[int, TokenMetadata] = {}
        # next sequence number in this chain's id namespace
        self._sequence: int = 0
        # chain_id -> trusted peer contract address
        self._peers: Dict[int, str] = {}
        # inbound message ids already applied
        self._processed: Set[str] = set()
        self._paused = False

        self.events: List[ContractEvent] = []

    def attach_messenger(self, messenger: Any) -> None:
        self._messenger = messenger

    # ── ERC-721 style views ───────────────────────────────────────

    def name(self) -> str:
        return self._name

    def symbol(self) -> str:
        return self._symbol

    def owner(self) -> str:
        return self._owner

    def paused(self) -> bool:
        return self._paused

    def total_supply(self) -> int:
        return len(self._owners)

    def minted_count(self) -> int:
        """Tokens minted in this network's namespace, bridged away or not."""
        return self._sequence

    def balance_of(self, owner: str) -> int:
        return self._balances.get(normalize_address(owner), 0)

    def owner_of(self, token_id: int) -> str:
        owner = self._owners.get(token_id)
        if not owner:
            raise TokenNotFoundError(f"Token {token_id} does not exist")
        return owner

    def exists(self, token_id: int) -> bool:
        return token_id in self._owners

    def tokens_by_owner(self, owner: str) -> List[int]:
        owner = normalize_address(owner)
        return sorted(tid for tid, o in self._owners.items() if o == owner)

    def token_metadata(self, token_id: int) -> Dict[str, Any]:
        self.owner_of(token_id)
        return self._metadata[token_id].to_dict()

    def tokens_with_metadata(self, owner: str) -> Tuple[List[int], List[Dict[str, Any]]]:
        ids = self.tokens_by_owner(owner)
        return ids, [self._metadata[tid].to_dict() for tid in ids]

    def token_uri(self, token_id: int) -> str:
        """Self-describing metadata document as a base64 JSON data URI."""
        self.owner_of(token_id)
        meta = self._metadata[token_id]
        doc = {
            "name": meta.name,
            "description": meta.description,
            "image": meta.image,
            "attributes": [
                {"trait_type": "Origin Chain", "value": meta.origin_chain_id},
                {"trait_type": "Minted At", "value": meta.minted_at},
            ],
        }
        encoded = base64.b64encode(json.dumps(doc).encode("utf-8")).decode("ascii")
        return "data:application/json;base64," + encoded

    # ── Trust configuration ───────────────────────────────────────

    def _only_owner(self, caller: str) -> None:
        if not same_address(caller, self._owner):
            raise UnauthorizedError("caller is not the contract owner")

    def set_peer(self, caller: str, chain_id: int, peer: str) -> None:
        """Trust messages from *peer* on *chain_id* (idempotent)."""
        self._only_owner(caller)
        if chain_id == self.chain_id:
            raise SameNetworkError("A contract cannot peer with its own chain")
        peer = normalize_address(peer)
        if self._peers.get(chain_id) == peer:
            return
        self._peers[chain_id] = peer
        self._emit(PeerSetEvent(chain_id, peer, self.address))
        logger.info("Chain %d: trusted peer %s on chain %d", self.chain_id, peer, chain_id)

    def remove_peer(self, caller: str, chain_id: int) -> None:
        self._only_owner(caller)
        self._peers.pop(chain_id, None)

    def peers(self) -> Dict[int, str]:
        return dict(self._peers)

    def is_trusted_peer(self, chain_id: int) -> bool:
        return chain_id in self._peers

    def pause(self, caller: str) -> None:
        self._only_owner(caller)
        self._paused = True

    def unpause(self, caller: str) -> None:
        self._only_owner(caller)
        self._paused = False

    # ── Minting / bridging ────────────────────────────────────────

    def _default_metadata(self, token_id: int, minted_at: int) -> TokenMetadata:
        color = f"{(token_id * 2654435761) & 0xFFFFFF:06x}"
        svg = _SVG_TEMPLATE.format(color=color, token_id=token_id, chain_id=self.chain_id)
        image = "data:image/svg+xml;base64," + base64.b64encode(svg.encode()).decode()
        return TokenMetadata(
            name=f"{self._name} #{token_id}",
            description=f"A cross-chain NFT minted on chain {self.chain_id}",
            image=image,
            origin_chain_id=self.chain_id,
            minted_at=minted_at,
        )

    def _mint_token(self, to: str, token_id: int, metadata: TokenMetadata) -> None:
        self._owners[token_id] = to
        self._balances[to] = self._balances.get(to, 0) + 1
        self._metadata[token_id] = metadata

    def mint(self, caller: str) -> int:
        """Mint the next token in this chain's namespace to *caller*."""
        if self._paused:
            raise ContractPausedError("Contract is paused")
        caller = normalize_address(caller)
        if self._sequence >= TOKEN_ID_MULTIPLIER:
            raise NamespaceExhaustedError(
                f"Chain {self.chain_id} has minted all {TOKEN_ID_MULTIPLIER} ids"
            )
        token_id = make_token_id(self.chain_id, self._sequence)
        self._sequence += 1

        self._mint_token(caller, token_id,
                         self._default_metadata(token_id, int(self._clock())))
        self._emit(TransferEvent(ZERO_ADDRESS, caller, token_id, self.address))
        self._emit(MintedEvent(caller, token_id, self.address))
        logger.info("Chain %d: minted token %d to %s", self.chain_id, token_id, caller)
        return token_id

    def bridge(self, caller: str, dest_chain_id: int, recipient: str,
               token_id: int) -> Any:
        """Burn *token_id* here and send it to *dest_chain_id*.

        All preconditions are checked before anything changes.  If the
        messenger refuses the message the burn is undone and the caller
        still owns the token.
        """
        if self._paused:
            raise ContractPausedError("Contract is paused")
        owner = self.owner_of(token_id)
        if not same_address(caller, owner):
            raise NotOwnerError(f"caller is not the owner of token {token_id}")
        if dest_chain_id == self.chain_id:
            raise SameNetworkError("Destination chain equals source chain")
        peer = self._peers.get(dest_chain_id)
        if peer is None:
            raise UntrustedPeerError(f"Chain {dest_chain_id} is not a trusted peer")
        recipient = require_recipient(recipient)
        if self._messenger is None:
            raise MessagingError("No messaging capability attached")

        metadata = self._metadata[token_id]

        # burn
        del self._owners[token_id]
        self._balances[owner] -= 1

        try:
            msg = self._messenger.send(
                dest_chain_id, peer, self.address,
                encode_payload(recipient, token_id, metadata),
            )
        except Exception as e:
            self._owners[token_id] = owner
            self._balances[owner] += 1
            logger.error("Chain %d: bridge of %d aborted, send failed: %s",
                         self.chain_id, token_id, e)
            raise MessagingError(f"Cross-chain send failed: {e}") from e

        del self._metadata[token_id]
        self._emit(TransferEvent(owner, ZERO_ADDRESS, token_id, self.address))
        self._emit(BridgedEvent(owner, token_id, dest_chain_id, recipient, self.address))
        logger.info(
            "Chain %d: bridged token %d to chain %d for %s (msg=%s)",
            self.chain_id, token_id, dest_chain_id, recipient,
            getattr(msg, "msg_id", "")[:8],
        )
        return msg

    def receive_message(self, message: Any) -> Tuple[bool, str]:
        """Inbound handler invoked by the messaging capability.

        Returns ``(accepted, reason)``.  Messages from untrusted chains or
        senders, re-deliveries of an applied message, and messages for an
        id that already exists here are ignored.
        """
        peer = self._peers.get(message.source_chain)
        if peer is None:
            return self._reject(message, f"untrusted source chain {message.source_chain}")
        if not same_address(peer, message.sender):
            return self._reject(message, f"untrusted sender {message.sender}")
        if message.msg_id in self._processed:
            return self._reject(message, f"message {message.msg_id} already processed")

        try:
            recipient, token_id, metadata = decode_payload(message.payload)
        except (ValueError, KeyError, TypeError) as e:
            return self._reject(message, f"malformed payload: {e}")

        if token_id in self._owners:
            return self._reject(message, str(TokenExistsError(f"token {token_id} already exists")))

        self._processed.add(message.msg_id)
        self._mint_token(recipient, token_id, metadata)
        self._emit(TransferEvent(ZERO_ADDRESS, recipient, token_id, self.address))
        self._emit(ReceivedEvent(recipient, token_id, message.source_chain, self.address))
        logger.info(
            "Chain %d: received token %d from chain %d for %s",
            self.chain_id, token_id, message.source_chain, recipient,
        )
        return True, ""

    def _reject(self, message: Any, reason: str) -> Tuple[bool, str]:
        logger.warning("Chain %d: ignored inbound message %s: %s",
                       self.chain_id, getattr(message, "msg_id", "?")[:8], reason)
        return False, reason

    def _emit(self, event: ContractEvent) -> None:
        self.events.append(event)

    # ── Persistence ───────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "address": self.address,
            "name": self._name,
            "symbol": self._symbol,
            "owner": self._owner,
            "paused": self._paused,
            "sequence": self._sequence,
            "owners": {str(k): v for k, v in self._owners.items()},
            "metadata": {str(k): m.to_dict() for k, m in self._metadata.items()},
            "peers": {str(k): v for k, v in self._peers.items()},
            "processed": sorted(self._processed),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], messenger: Any = None) -> "BridgeNFT":
        nft = cls(
            chain_id=int(data["chain_id"]),
            owner=data["owner"],
            token_name=data.get("name", "Cross-Chain NFT"),
            token_symbol=data.get("symbol", "XNFT"),
            messenger=messenger,
            address=data.get("address", ""),
        )
        nft._paused = bool(data.get("paused", False))
        nft._sequence = int(data.get("sequence", 0))
        nft._owners = {int(k): v for k, v in data.get("owners", {}).items()}
        for owner in nft._owners.values():
            nft._balances[owner] = nft._balances.get(owner, 0) + 1
        nft._metadata = {
            int(k): TokenMetadata.from_dict(m) for k, m in data.get("metadata", {}).items()
        }
        nft._peers = {int(k): v for k, v in data.get("peers", {}).items()}
        nft._processed = set(data.get("processed", []))
        return nft
