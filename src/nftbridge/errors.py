"""
nftbridge — Error taxonomy

Every failure the bridge can surface derives from ``BridgeError`` and
carries a stable ``code`` string, so the JSON-RPC layer can ship an
error across the wire and the client can raise the same class again.

Families:

  - **PreconditionError** — rejected before any state mutation (not the
    owner, untrusted destination, same source/destination, malformed
    address, unknown token, paused contract).
  - **ConnectivityError** — RPC unreachable, wrong network selected,
    network switch refused.  Callers correct and retry; mutating calls
    are never retried automatically.
  - **DeploymentError** / **ConfigError** — operator-side problems with
    deployment records or network descriptors.

Delivery uncertainty (a message sent but not yet observed on the
destination) is deliberately *not* an error; see
``nftbridge.orchestrator.BridgeStatus.TIMED_OUT``.
"""

from __future__ import annotations

from typing import Dict, Type


class BridgeError(Exception):
    """Base class for every nftbridge error.

    ``operation`` is set when the failure happened after a bridge
    transaction was already submitted, so the caller can keep watching it.
    """

    code = "bridge_error"
    operation = None

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------

class PreconditionError(BridgeError):
    code = "precondition_failed"


class NotOwnerError(PreconditionError):
    code = "not_owner"


class UntrustedPeerError(PreconditionError):
    code = "untrusted_peer"


class SameNetworkError(PreconditionError):
    code = "same_network"


class InvalidAddressError(PreconditionError):
    code = "invalid_address"


class TokenNotFoundError(PreconditionError):
    code = "token_not_found"


class TokenExistsError(PreconditionError):
    code = "token_exists"


class ContractPausedError(PreconditionError):
    code = "contract_paused"


class UnauthorizedError(PreconditionError):
    code = "unauthorized"


class NamespaceExhaustedError(PreconditionError):
    code = "namespace_exhausted"


class UnknownNetworkError(PreconditionError):
    code = "unknown_network"


class ContractNotFoundError(PreconditionError):
    code = "contract_not_found"


class MessagingError(BridgeError):
    """The messaging capability refused an outbound message."""

    code = "messaging_failed"


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------

class ConnectivityError(BridgeError):
    code = "connectivity"


class RPCConnectionError(ConnectivityError):
    code = "rpc_unreachable"


class WrongNetworkError(ConnectivityError):
    code = "wrong_network"


class NetworkSwitchError(ConnectivityError):
    code = "network_switch_failed"


class ReceiptTimeoutError(ConnectivityError):
    code = "receipt_timeout"


# ---------------------------------------------------------------------------
# Operator side
# ---------------------------------------------------------------------------

class DeploymentError(BridgeError):
    code = "deployment_failed"


class ConfigError(BridgeError):
    code = "config_error"


def _all_subclasses(cls: Type[BridgeError]):
    for sub in cls.__subclasses__():
        yield sub
        yield from _all_subclasses(sub)


ERRORS_BY_CODE: Dict[str, Type[BridgeError]] = {
    cls.code: cls for cls in [BridgeError, *_all_subclasses(BridgeError)]
}


def error_from_code(code: str, message: str) -> BridgeError:
    """Rebuild a ``BridgeError`` from its wire ``code``."""
    cls = ERRORS_BY_CODE.get(code, BridgeError)
    return cls(message)
