"""
Accounts, address helpers and the wallet session.

Addresses are ``0x``-prefixed, 20-byte, lower-case hex strings.  Key
derivation follows the deterministic scheme of the devnet ledger: the
public key is ``sha256(b"pub:" + private_key)`` and the address is the
last 20 bytes of ``sha256(public_key)``.

``WalletSession`` plays the part of a connected wallet: it knows the
signer account and which network it is currently pointed at, and it can
be asked to switch networks before a transaction is submitted.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import InvalidAddressError, NetworkSwitchError, ConnectivityError
from .networks import NetworkConfig

logger = logging.getLogger("nftbridge.wallet")

ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def normalize_address(value: Any) -> str:
    """Validate *value* and return its canonical lower-case form."""
    if not is_address(value):
        raise InvalidAddressError(f"Malformed address: {value!r}")
    return value.lower()


def require_recipient(value: Any) -> str:
    """Like ``normalize_address`` but also rejects the zero address."""
    addr = normalize_address(value)
    if addr == ZERO_ADDRESS:
        raise InvalidAddressError("Recipient cannot be the zero address")
    return addr


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


@dataclass
class Account:
    """A signer account held by the operator or end user."""

    private_key: bytes = b""

    @classmethod
    def generate(cls) -> "Account":
        return cls(private_key=secrets.token_bytes(32))

    @classmethod
    def from_key(cls, private_key_hex: str) -> "Account":
        raw = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
        try:
            key = bytes.fromhex(raw)
        except ValueError:
            raise InvalidAddressError("Private key must be hex encoded")
        if len(key) != 32:
            raise InvalidAddressError("Private key must be 32 bytes")
        return cls(private_key=key)

    @property
    def public_key(self) -> bytes:
        return hashlib.sha256(b"pub:" + self.private_key).digest()

    @property
    def address(self) -> str:
        h = hashlib.sha256(self.public_key).digest()
        return "0x" + h[-20:].hex()

    @property
    def private_key_hex(self) -> str:
        return self.private_key.hex()

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "public_key": self.public_key.hex()}


class WalletSession:
    """The caller's connected wallet: signer account + selected network.

    ``providers`` is anything with ``get(network) -> LedgerClient``; the
    process-wide cache in ``nftbridge.provider`` is the usual choice.
    """

    def __init__(self, account: Account, providers: Any,
                 chain_id: Optional[int] = None):
        self.account = account
        self._providers = providers
        self.chain_id = chain_id

    @property
    def address(self) -> str:
        return self.account.address

    async def switch_network(self, network: NetworkConfig) -> None:
        """Point the session at *network*, verifying the endpoint first.

        The endpoint must answer with the chain id the descriptor claims;
        otherwise the switch is refused and the session keeps its current
        network.
        """
        if self.chain_id == network.chain_id:
            return
        logger.info(
            "Switching to network: %s (Chain ID: %d)",
            network.display_name, network.chain_id,
        )
        try:
            client = self._providers.get(network)
            reported = await client.chain_id()
        except ConnectivityError as e:
            raise NetworkSwitchError(
                f"Failed to switch to {network.key}: {e.message}"
            ) from e
        if reported != network.chain_id:
            raise NetworkSwitchError(
                f"Endpoint for {network.key} reports chain id {reported}, "
                f"expected {network.chain_id}"
            )
        self.chain_id = network.chain_id
        logger.info("Successfully switched to %s", network.display_name)

    async def ensure_network(self, network: NetworkConfig) -> None:
        if self.chain_id != network.chain_id:
            await self.switch_network(network)
