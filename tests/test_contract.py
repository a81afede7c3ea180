"""
Tests for the bridge NFT contract state machine.

Covers:
  - Minting in the per-chain id namespace
  - Bridge preconditions (ownership, trust, recipient, pause)
  - Burn rollback when the messenger refuses a message
  - Inbound handler trust checks and duplicate suppression
  - Round trip A -> B -> A with unchanged id and metadata
  - Token URI document and snapshot persistence
"""

import base64
import json

import pytest
from unittest.mock import MagicMock

from nftbridge.contract import (
    BridgeNFT,
    TokenMetadata,
    TOKEN_ID_MULTIPLIER,
    decode_payload,
    encode_payload,
    make_token_id,
    origin_chain_of,
)
from nftbridge.errors import (
    ContractPausedError,
    InvalidAddressError,
    MessagingError,
    NamespaceExhaustedError,
    NotOwnerError,
    SameNetworkError,
    TokenNotFoundError,
    UnauthorizedError,
    UntrustedPeerError,
)
from nftbridge.messaging import CrossChainMessage, MessageRouter
from nftbridge.wallet import ZERO_ADDRESS

OWNER = "0x" + "a1" * 20
ALICE = "0x" + "b2" * 20
BOB = "0x" + "c3" * 20
ADDR_A = "0x" + "0a" * 20
ADDR_B = "0x" + "0b" * 20


# ══════════════════════════════════════════════════════════════════════
#  Fixtures
# ══════════════════════════════════════════════════════════════════════

@pytest.fixture
def router():
    return MessageRouter()


@pytest.fixture
def pair(router):
    """Two peered contracts on 43113 and 84532 sharing one router."""
    a = BridgeNFT(43113, OWNER, messenger=router.messenger_for(43113), address=ADDR_A,
                  clock=lambda: 1_700_000_000)
    b = BridgeNFT(84532, OWNER, messenger=router.messenger_for(84532), address=ADDR_B)
    router.register_endpoint(43113, a.receive_message)
    router.register_endpoint(84532, b.receive_message)
    a.set_peer(OWNER, 84532, ADDR_B)
    b.set_peer(OWNER, 43113, ADDR_A)
    return a, b


def _inbound(payload, source=43113, sender=ADDR_A, msg_id="m1"):
    return CrossChainMessage(msg_id=msg_id, source_chain=source, dest_chain=84532,
                             sender=sender, dest_address=ADDR_B, payload=payload)


# ══════════════════════════════════════════════════════════════════════
#  Token ids
# ══════════════════════════════════════════════════════════════════════

class TestTokenIds:
    def test_make_token_id(self):
        assert make_token_id(43113, 0) == 431130000
        assert make_token_id(10, 1) == 100001

    def test_origin_chain_of(self):
        assert origin_chain_of(431130000) == 43113
        assert origin_chain_of(845329999) == 84532

    def test_payload_codec(self):
        meta = TokenMetadata("n", "d", "img", 43113, 5)
        recipient, token_id, decoded = decode_payload(encode_payload(ALICE, 431130000, meta))
        assert (recipient, token_id, decoded) == (ALICE, 431130000, meta)


# ══════════════════════════════════════════════════════════════════════
#  Minting
# ══════════════════════════════════════════════════════════════════════

class TestMint:
    def test_first_mint_on_avalanche(self, pair):
        a, _ = pair
        assert a.mint(ALICE) == 431130000
        assert a.owner_of(431130000) == ALICE
        assert a.balance_of(ALICE) == 1

    def test_sequence_increments(self, pair):
        a, _ = pair
        ids = [a.mint(ALICE) for _ in range(3)]
        assert ids == [431130000, 431130001, 431130002]
        assert a.total_supply() == 3
        assert a.tokens_by_owner(ALICE) == ids

    def test_metadata_records_origin(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        meta = a.token_metadata(tid)
        assert meta["originChainId"] == 43113
        assert meta["mintedAt"] == 1_700_000_000
        assert meta["name"].endswith(f"#{tid}")

    def test_mint_emits_events(self, pair):
        a, _ = pair
        a.events.clear()
        tid = a.mint(ALICE)
        names = [e.event_name for e in a.events]
        assert names == ["Transfer", "NFTMinted"]
        assert a.events[0].data == {"from": ZERO_ADDRESS, "to": ALICE, "tokenId": tid}

    def test_mint_rejected_while_paused(self, pair):
        a, _ = pair
        a.pause(OWNER)
        with pytest.raises(ContractPausedError):
            a.mint(ALICE)
        a.unpause(OWNER)
        assert a.mint(ALICE) == 431130000

    def test_namespace_exhausted(self, pair):
        a, _ = pair
        a._sequence = TOKEN_ID_MULTIPLIER
        with pytest.raises(NamespaceExhaustedError):
            a.mint(ALICE)
        assert a.total_supply() == 0

    def test_mint_rejects_malformed_caller(self, pair):
        a, _ = pair
        with pytest.raises(InvalidAddressError):
            a.mint("not-an-address")


# ══════════════════════════════════════════════════════════════════════
#  Trust configuration
# ══════════════════════════════════════════════════════════════════════

class TestPeers:
    def test_set_peer_is_idempotent(self, pair):
        a, _ = pair
        before = len(a.events)
        a.set_peer(OWNER, 84532, ADDR_B)
        assert len(a.events) == before
        assert a.peers() == {84532: ADDR_B}

    def test_set_peer_owner_only(self, pair):
        a, _ = pair
        with pytest.raises(UnauthorizedError):
            a.set_peer(ALICE, 80002, ADDR_B)
        assert not a.is_trusted_peer(80002)

    def test_cannot_peer_with_own_chain(self, pair):
        a, _ = pair
        with pytest.raises(SameNetworkError):
            a.set_peer(OWNER, 43113, ADDR_B)

    def test_remove_peer(self, pair):
        a, _ = pair
        a.remove_peer(OWNER, 84532)
        assert not a.is_trusted_peer(84532)


# ══════════════════════════════════════════════════════════════════════
#  Bridging out
# ══════════════════════════════════════════════════════════════════════

class TestBridge:
    def test_bridge_burns_and_sends(self, pair, router):
        a, b = pair
        tid = a.mint(ALICE)
        msg = a.bridge(ALICE, 84532, ALICE, tid)

        assert not a.exists(tid)
        assert a.balance_of(ALICE) == 0
        assert not b.exists(tid)
        assert router.pending() == [msg]
        assert msg.dest_address == ADDR_B
        assert msg.sender == ADDR_A

    def test_minted_count_survives_burn(self, pair, router):
        a, b = pair
        tid = a.mint(ALICE)
        a.bridge(ALICE, 84532, ALICE, tid)
        router.deliver_pending()
        assert a.total_supply() == 0
        assert a.minted_count() == 1
        assert b.minted_count() == 0

    def test_bridge_events(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        a.events.clear()
        a.bridge(ALICE, 84532, BOB, tid)
        assert [e.event_name for e in a.events] == ["Transfer", "NFTBridged"]
        assert a.events[1].data == {
            "owner": ALICE, "tokenId": tid, "destChainId": 84532, "recipient": BOB,
        }

    def test_delivery_mints_same_id_on_destination(self, pair, router):
        a, b = pair
        tid = a.mint(ALICE)
        original = a.token_metadata(tid)
        a.bridge(ALICE, 84532, BOB, tid)
        router.deliver_pending()

        assert b.owner_of(tid) == BOB
        assert b.token_metadata(tid) == original
        assert [e.event_name for e in b.events][-2:] == ["Transfer", "NFTReceived"]

    def test_not_owner_rejected_without_state_change(self, pair, router):
        a, _ = pair
        tid = a.mint(ALICE)
        with pytest.raises(NotOwnerError):
            a.bridge(BOB, 84532, BOB, tid)
        assert a.owner_of(tid) == ALICE
        assert router.pending() == []

    def test_untrusted_destination_rejected(self, pair, router):
        a, _ = pair
        tid = a.mint(ALICE)
        with pytest.raises(UntrustedPeerError):
            a.bridge(ALICE, 80002, ALICE, tid)
        assert a.owner_of(tid) == ALICE
        assert router.pending() == []

    def test_same_network_rejected(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        with pytest.raises(SameNetworkError):
            a.bridge(ALICE, 43113, ALICE, tid)
        assert a.owner_of(tid) == ALICE

    @pytest.mark.parametrize("recipient", [ZERO_ADDRESS, "0x1234", "", None])
    def test_bad_recipient_rejected(self, pair, router, recipient):
        a, _ = pair
        tid = a.mint(ALICE)
        with pytest.raises(InvalidAddressError):
            a.bridge(ALICE, 84532, recipient, tid)
        assert a.owner_of(tid) == ALICE
        assert router.pending() == []

    def test_unknown_token_rejected(self, pair):
        a, _ = pair
        with pytest.raises(TokenNotFoundError):
            a.bridge(ALICE, 84532, ALICE, 431139999)

    def test_paused_contract_rejects_bridge(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        a.pause(OWNER)
        with pytest.raises(ContractPausedError):
            a.bridge(ALICE, 84532, ALICE, tid)
        assert a.owner_of(tid) == ALICE

    def test_send_failure_restores_ownership(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        messenger = MagicMock()
        messenger.send.side_effect = RuntimeError("relay down")
        a.attach_messenger(messenger)

        with pytest.raises(MessagingError):
            a.bridge(ALICE, 84532, ALICE, tid)
        assert a.owner_of(tid) == ALICE
        assert a.balance_of(ALICE) == 1
        assert a.token_metadata(tid)["originChainId"] == 43113

    def test_second_bridge_of_inflight_token_fails(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        a.bridge(ALICE, 84532, ALICE, tid)
        with pytest.raises(TokenNotFoundError):
            a.bridge(ALICE, 84532, ALICE, tid)


# ══════════════════════════════════════════════════════════════════════
#  Inbound handler
# ══════════════════════════════════════════════════════════════════════

class TestReceive:
    def _payload(self, token_id=431130000, recipient=ALICE):
        meta = TokenMetadata("NFT", "desc", "img", 43113, 1)
        return encode_payload(recipient, token_id, meta)

    def test_untrusted_chain_ignored(self, pair):
        _, b = pair
        ok, reason = b.receive_message(_inbound(self._payload(), source=80002))
        assert not ok
        assert "untrusted source chain" in reason
        assert not b.exists(431130000)

    def test_untrusted_sender_ignored(self, pair):
        _, b = pair
        ok, reason = b.receive_message(_inbound(self._payload(), sender=BOB))
        assert not ok
        assert "untrusted sender" in reason
        assert not b.exists(431130000)

    def test_redelivered_message_ignored(self, pair):
        _, b = pair
        msg = _inbound(self._payload())
        assert b.receive_message(msg) == (True, "")
        ok, reason = b.receive_message(msg)
        assert not ok
        assert "already processed" in reason
        assert b.balance_of(ALICE) == 1

    def test_existing_token_not_minted_twice(self, pair):
        _, b = pair
        assert b.receive_message(_inbound(self._payload(), msg_id="m1"))[0]
        ok, reason = b.receive_message(_inbound(self._payload(recipient=BOB), msg_id="m2"))
        assert not ok
        assert "already exists" in reason
        assert b.owner_of(431130000) == ALICE

    def test_malformed_payload_ignored(self, pair):
        _, b = pair
        ok, reason = b.receive_message(_inbound("{not json"))
        assert not ok
        assert "malformed payload" in reason


# ══════════════════════════════════════════════════════════════════════
#  Round trip / single ownership
# ══════════════════════════════════════════════════════════════════════

class TestRoundTrip:
    def test_a_to_b_to_a_preserves_id_and_metadata(self, pair, router):
        a, b = pair
        tid = a.mint(ALICE)
        original = a.token_metadata(tid)

        a.bridge(ALICE, 84532, ALICE, tid)
        router.deliver_pending()
        b.bridge(ALICE, 43113, ALICE, tid)
        router.deliver_pending()

        assert a.owner_of(tid) == ALICE
        assert a.token_metadata(tid) == original
        assert a.token_metadata(tid)["originChainId"] == 43113
        assert not b.exists(tid)

    def test_owned_on_at_most_one_chain(self, pair, router):
        a, b = pair
        tid = a.mint(ALICE)

        def holders():
            return [c.chain_id for c in (a, b) if c.exists(tid)]

        assert holders() == [43113]
        a.bridge(ALICE, 84532, ALICE, tid)
        assert holders() == []
        router.deliver_pending()
        assert holders() == [84532]


# ══════════════════════════════════════════════════════════════════════
#  Views / persistence
# ══════════════════════════════════════════════════════════════════════

class TestViews:
    def test_token_uri_document(self, pair):
        a, _ = pair
        tid = a.mint(ALICE)
        uri = a.token_uri(tid)
        prefix = "data:application/json;base64,"
        assert uri.startswith(prefix)
        doc = json.loads(base64.b64decode(uri[len(prefix):]))
        assert doc["name"] == a.token_metadata(tid)["name"]
        assert doc["image"].startswith("data:image/svg+xml;base64,")
        assert doc["attributes"] == [
            {"trait_type": "Origin Chain", "value": 43113},
            {"trait_type": "Minted At", "value": 1_700_000_000},
        ]

    def test_tokens_with_metadata(self, pair):
        a, _ = pair
        first = a.mint(ALICE)
        a.mint(BOB)
        second = a.mint(ALICE)
        ids, metas = a.tokens_with_metadata(ALICE)
        assert ids == [first, second]
        assert [m["name"] for m in metas] == [
            a.token_metadata(first)["name"], a.token_metadata(second)["name"],
        ]

    def test_snapshot_round_trip(self, pair, router):
        a, _ = pair
        tid = a.mint(ALICE)
        a.mint(BOB)
        a.bridge(ALICE, 84532, BOB, tid)

        restored = BridgeNFT.from_dict(json.loads(json.dumps(a.to_dict())))
        assert restored.to_dict() == a.to_dict()
        assert restored.balance_of(BOB) == 1
        assert restored.peers() == {84532: ADDR_B}
        assert restored.mint(ALICE) == 431130002
