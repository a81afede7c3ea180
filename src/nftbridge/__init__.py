"""
nftbridge — Cross-chain NFT bridge

Features:
- Bridge NFT contract: burn on source, message, mint on destination
- Token ids partitioned by origin chain
- Store-and-forward cross-chain message router
- Ledger nodes with JSON-RPC server and client
- Deployment reconciler keeping a complete trust graph
- Bridge orchestrator with completion watch, timeout and cancellation
- Debounced per-network listing cache
"""

__version__ = "0.1.0"

from .errors import (
    BridgeError, PreconditionError, ConnectivityError, MessagingError,
    DeploymentError, ConfigError,
)
from .contract import BridgeNFT, TokenMetadata, make_token_id, origin_chain_of
from .messaging import CrossChainMessage, MessageRouter, MessageStatus, ChainMessenger
from .node import LedgerNode, NodeConfig, TransactionReceipt
from .rpc import RPCServer, RPCClient, RPCError, RPCErrorCode
from .client import LedgerClient, LocalLedgerClient, RPCLedgerClient, NFTContract
from .provider import get_provider, register_provider, reset_providers
from .networks import NetworkConfig, NetworkRegistry, DEFAULT_NETWORKS, load_networks
from .deployments import DeploymentRecord, DeploymentStore
from .reconciler import DeploymentReconciler, ReconcileReport, complete_graph
from .wallet import Account, WalletSession
from .cache import ListingCache
from .orchestrator import (
    BridgeOrchestrator, BridgeOperation, BridgeStatus, CancellationToken,
    NFTListing, WatchConfig,
)
from .devnet import Devnet

__all__ = [
    '__version__',
    'BridgeError', 'PreconditionError', 'ConnectivityError', 'MessagingError',
    'DeploymentError', 'ConfigError',
    'BridgeNFT', 'TokenMetadata', 'make_token_id', 'origin_chain_of',
    'CrossChainMessage', 'MessageRouter', 'MessageStatus', 'ChainMessenger',
    'LedgerNode', 'NodeConfig', 'TransactionReceipt',
    'RPCServer', 'RPCClient', 'RPCError', 'RPCErrorCode',
    'LedgerClient', 'LocalLedgerClient', 'RPCLedgerClient', 'NFTContract',
    'get_provider', 'register_provider', 'reset_providers',
    'NetworkConfig', 'NetworkRegistry', 'DEFAULT_NETWORKS', 'load_networks',
    'DeploymentRecord', 'DeploymentStore',
    'DeploymentReconciler', 'ReconcileReport', 'complete_graph',
    'Account', 'WalletSession',
    'ListingCache',
    'BridgeOrchestrator', 'BridgeOperation', 'BridgeStatus', 'CancellationToken',
    'NFTListing', 'WatchConfig',
    'Devnet',
]
