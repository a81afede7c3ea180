"""
Contract notifications emitted by the bridge NFT contract.

  - ``Transfer``     — mint (from zero address) and burn (to zero address)
  - ``NFTMinted``    — a fresh token created in this network's namespace
  - ``NFTBridged``   — a token burned here and sent to another network
  - ``NFTReceived``  — a token minted here from an inbound message
  - ``PeerSet``      — a trust edge configured on this contract
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class ContractEvent:
    """Base contract event."""
    event_name: str
    contract_address: str = ""
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event_name,
            "contract": self.contract_address,
            "timestamp": self.timestamp,
            **self.data,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "ContractEvent":
        data = dict(data)
        return ContractEvent(
            event_name=data.pop("event"),
            contract_address=data.pop("contract", ""),
            timestamp=data.pop("timestamp", 0.0),
            data=data,
        )


class TransferEvent(ContractEvent):
    def __init__(self, from_addr: str, to_addr: str, token_id: int,
                 contract_address: str = ""):
        super().__init__(
            event_name="Transfer",
            contract_address=contract_address,
            data={"from": from_addr, "to": to_addr, "tokenId": token_id},
        )


class MintedEvent(ContractEvent):
    def __init__(self, owner: str, token_id: int, contract_address: str = ""):
        super().__init__(
            event_name="NFTMinted",
            contract_address=contract_address,
            data={"owner": owner, "tokenId": token_id},
        )


class BridgedEvent(ContractEvent):
    def __init__(self, owner: str, token_id: int, dest_chain_id: int,
                 recipient: str, contract_address: str = ""):
        super().__init__(
            event_name="NFTBridged",
            contract_address=contract_address,
            data={
                "owner": owner,
                "tokenId": token_id,
                "destChainId": dest_chain_id,
                "recipient": recipient,
            },
        )


class ReceivedEvent(ContractEvent):
    def __init__(self, recipient: str, token_id: int, source_chain_id: int,
                 contract_address: str = ""):
        super().__init__(
            event_name="NFTReceived",
            contract_address=contract_address,
            data={
                "recipient": recipient,
                "tokenId": token_id,
                "sourceChainId": source_chain_id,
            },
        )


class PeerSetEvent(ContractEvent):
    def __init__(self, chain_id: int, peer: str, contract_address: str = ""):
        super().__init__(
            event_name="PeerSet",
            contract_address=contract_address,
            data={"chainId": chain_id, "peer": peer},
        )
