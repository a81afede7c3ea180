"""
nftbridge — Cross-chain messaging capability

The bridge contract depends only on a *send* call (hand an opaque payload
to the channel, addressed to a destination chain and contract) and on
being invoked with inbound messages.  This module provides that contract
plus an in-process store-and-forward router used by the local devnet and
the test-suite:

  1. **CrossChainMessage** — envelope: unique id, monotonic nonce per
     ``(source, dest)`` pair, source/destination chain ids, sender and
     destination contract addresses, opaque payload.

  2. **MessageRouter** — per-chain endpoints, an outbox of pending
     messages, and delivery once a message's latency has elapsed.  A
     message id is handed to its endpoint at most once; a message whose
     destination has no endpoint yet stays queued.

  3. **ChainMessenger** — the per-chain view handed to a contract, so the
     contract only ever sees ``send(dest_chain, dest_address, sender,
     payload)``.

Integration
-----------
::

    router = MessageRouter(latency=30.0)
    router.register_endpoint(43113, node_a.handle_message)
    router.register_endpoint(84532, node_b.handle_message)
    node_a.attach_messenger(router.messenger_for(43113))

    await router.run(interval=1.0, stop_event=stop)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, asdict
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .errors import MessagingError

logger = logging.getLogger("nftbridge.messaging")

# handler(message) -> (accepted, reason)
EndpointHandler = Callable[["CrossChainMessage"], Tuple[bool, str]]


class MessageStatus(Enum):
    PENDING = auto()
    DELIVERED = auto()
    REJECTED = auto()


@dataclass
class CrossChainMessage:
    """Envelope for one cross-chain message.

    Fields
    ------
    msg_id : str
        Globally unique identifier (UUID4 hex).
    nonce : int
        Monotonically increasing per ``(source_chain, dest_chain)``.
    source_chain / dest_chain : int
        Chain ids of the endpoints.
    sender : str
        Contract address on the source chain that sent the message.
    dest_address : str
        Contract address on the destination chain it is addressed to.
    payload : str
        Opaque payload; the channel never interprets it.
    timestamp : float
        Send time (UNIX epoch).
    deliver_after : float
        Earliest delivery time (``timestamp`` + channel latency).
    status : MessageStatus
        Lifecycle status.
    """

    msg_id: str = ""
    nonce: int = 0
    source_chain: int = 0
    dest_chain: int = 0
    sender: str = ""
    dest_address: str = ""
    payload: str = ""
    timestamp: float = 0.0
    deliver_after: float = 0.0
    status: MessageStatus = MessageStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.name
        return d


class ChainMessenger:
    """Outbound half of the messaging capability, bound to one chain."""

    def __init__(self, router: "MessageRouter", chain_id: int):
        self._router = router
        self.chain_id = chain_id

    def send(self, dest_chain: int, dest_address: str, sender: str,
             payload: str) -> CrossChainMessage:
        return self._router.send(self.chain_id, dest_chain, sender,
                                 dest_address, payload)


class MessageRouter:
    """Store-and-forward router between chain endpoints."""

    def __init__(self, latency: float = 0.0,
                 clock: Callable[[], float] = time.time):
        self.latency = latency
        self._clock = clock

        # chain_id -> inbound handler
        self._endpoints: Dict[int, EndpointHandler] = {}

        # messages waiting for delivery, in send order
        self._outbox: List[CrossChainMessage] = []

        # (source, dest) -> next nonce
        self._nonce_seq: Dict[Tuple[int, int], int] = {}

        # ids already handed to an endpoint
        self._delivered: Set[str] = set()

        # every message ever sent (audit trail)
        self._message_log: List[CrossChainMessage] = []

    # -- Registration ------------------------------------------------------

    def register_endpoint(self, chain_id: int, handler: EndpointHandler) -> None:
        if chain_id in self._endpoints:
            raise ValueError(f"Chain {chain_id} already registered")
        self._endpoints[chain_id] = handler
        logger.info("Router: registered chain %d", chain_id)

    def messenger_for(self, chain_id: int) -> ChainMessenger:
        return ChainMessenger(self, chain_id)

    @property
    def chain_ids(self) -> List[int]:
        return list(self._endpoints.keys())

    # -- Sending -----------------------------------------------------------

    def send(
        self,
        source_chain: int,
        dest_chain: int,
        sender: str,
        dest_address: str,
        payload: str,
    ) -> CrossChainMessage:
        """Queue a message from *source_chain* to *dest_chain*."""
        if source_chain == dest_chain:
            raise MessagingError(f"Cannot send a message from chain {source_chain} to itself")
        if not isinstance(payload, str):
            raise MessagingError("Payload must be an encoded string")

        pair = (source_chain, dest_chain)
        nonce = self._nonce_seq.get(pair, 0)
        self._nonce_seq[pair] = nonce + 1

        now = self._clock()
        msg = CrossChainMessage(
            msg_id=uuid.uuid4().hex,
            nonce=nonce,
            source_chain=source_chain,
            dest_chain=dest_chain,
            sender=sender,
            dest_address=dest_address,
            payload=payload,
            timestamp=now,
            deliver_after=now + self.latency,
        )
        self._outbox.append(msg)
        self._message_log.append(msg)
        logger.info(
            "Router: queued msg %s (nonce=%d) %d -> %d",
            msg.msg_id[:8], nonce, source_chain, dest_chain,
        )
        return msg

    # -- Delivery ----------------------------------------------------------

    def pending(self) -> List[CrossChainMessage]:
        return list(self._outbox)

    def deliver(self, msg: CrossChainMessage) -> Tuple[bool, str]:
        """Hand *msg* to its destination endpoint (at most once per id)."""
        if msg.msg_id in self._delivered:
            return False, f"Message {msg.msg_id} already delivered"
        handler = self._endpoints.get(msg.dest_chain)
        if handler is None:
            return False, f"No endpoint for chain {msg.dest_chain}"

        self._delivered.add(msg.msg_id)
        ok, reason = handler(msg)
        if ok:
            msg.status = MessageStatus.DELIVERED
            logger.info(
                "Router: delivered msg %s to %d (nonce=%d)",
                msg.msg_id[:8], msg.dest_chain, msg.nonce,
            )
        else:
            msg.status = MessageStatus.REJECTED
            logger.warning(
                "Router: msg %s rejected by %d: %s",
                msg.msg_id[:8], msg.dest_chain, reason,
            )
        return ok, reason

    def deliver_pending(self, now: Optional[float] = None) -> List[Tuple[CrossChainMessage, bool, str]]:
        """Deliver every queued message whose latency has elapsed.

        Messages for chains without an endpoint stay queued.  Returns a
        list of ``(message, accepted, reason)`` for the messages handed
        over in this pass.
        """
        now = self._clock() if now is None else now
        results: List[Tuple[CrossChainMessage, bool, str]] = []
        remaining: List[CrossChainMessage] = []

        for msg in self._outbox:
            if msg.deliver_after > now or msg.dest_chain not in self._endpoints:
                remaining.append(msg)
                continue
            ok, reason = self.deliver(msg)
            results.append((msg, ok, reason))

        self._outbox = remaining
        return results

    async def run(self, interval: float = 1.0,
                  stop_event: Optional[asyncio.Event] = None) -> None:
        """Relay loop: deliver due messages every *interval* seconds."""
        stop_event = stop_event or asyncio.Event()
        logger.info("Router: relay loop started (latency=%.1fs)", self.latency)
        while not stop_event.is_set():
            self.deliver_pending()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Router: relay loop stopped")

    # -- Info / Audit ------------------------------------------------------

    def router_info(self) -> Dict[str, Any]:
        return {
            "chains": self.chain_ids,
            "pending": len(self._outbox),
            "delivered": len(self._delivered),
            "total_messages": len(self._message_log),
        }

    def message_log(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Sent messages, oldest first; *limit* keeps only the most recent."""
        log = self._message_log
        if limit is not None:
            log = log[-limit:] if limit > 0 else []
        return [m.to_dict() for m in log]
