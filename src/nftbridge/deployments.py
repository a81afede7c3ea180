"""
Deployment records.

The deployment file is the shared artifact between the reconciler (which
writes it) and every reader (orchestrator, CLI, frontends).  It is a JSON
object keyed by the decimal chain id::

    {
      "43113": {
        "abi": [...],
        "address": "0x...",
        "blockExplorer": "https://testnet.snowtrace.io",
        "chainId": 43113,
        "network": "avalanche-testnet",
        "rpcUrl": "https://api.avax-test.network/ext/bc/C/rpc"
      }
    }

Keys are sorted and indented by two spaces so that every reader and
every rewrite produces identical bytes for identical content.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigError, DeploymentError
from .wallet import normalize_address

logger = logging.getLogger("nftbridge.deployments")

DEPLOYMENTS_ENV = "NFTBRIDGE_DEPLOYMENTS"
DEFAULT_DEPLOYMENTS_PATH = "deployments.json"


@dataclass(frozen=True)
class DeploymentRecord:
    chain_id: int
    address: str
    network: str
    rpc_url: str = ""
    block_explorer: str = ""
    abi: List[str] = field(default_factory=list, hash=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "abi": list(self.abi),
            "address": self.address,
            "blockExplorer": self.block_explorer,
            "chainId": self.chain_id,
            "network": self.network,
            "rpcUrl": self.rpc_url,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "DeploymentRecord":
        try:
            return DeploymentRecord(
                chain_id=int(data["chainId"]),
                address=normalize_address(data["address"]),
                network=str(data.get("network", "")),
                rpc_url=str(data.get("rpcUrl", "")),
                block_explorer=str(data.get("blockExplorer", "")),
                abi=list(data.get("abi", [])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Malformed deployment record: {e}")


def default_deployments_path() -> str:
    return os.environ.get(DEPLOYMENTS_ENV, DEFAULT_DEPLOYMENTS_PATH)


class DeploymentStore:
    """Reads and writes the deployment file."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or default_deployments_path()

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def load(self) -> Dict[int, DeploymentRecord]:
        if not self.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Deployment file {self.path} is not valid JSON: {e}")
        if not isinstance(raw, dict):
            raise ConfigError(f"Deployment file {self.path} must contain a JSON object")

        records: Dict[int, DeploymentRecord] = {}
        for key, data in raw.items():
            rec = DeploymentRecord.from_dict(data)
            if str(rec.chain_id) != str(key):
                raise ConfigError(
                    f"Deployment entry {key} carries chainId {rec.chain_id}"
                )
            records[rec.chain_id] = rec
        return records

    def dumps(self, records: Mapping[int, DeploymentRecord]) -> str:
        data = {str(cid): rec.to_dict() for cid, rec in records.items()}
        return json.dumps(data, sort_keys=True, indent=2) + "\n"

    def save(self, records: Mapping[int, DeploymentRecord]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            tmp = self.path + ".tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(self.dumps(records))
            os.replace(tmp, self.path)
        except OSError as e:
            raise DeploymentError(f"Could not write {self.path}: {e}")
        logger.info("Deployment info saved to %s (%d network(s))", self.path, len(records))

    def get(self, chain_id: int) -> Optional[DeploymentRecord]:
        return self.load().get(int(chain_id))

    def by_network(self, key: str) -> Optional[DeploymentRecord]:
        for rec in self.load().values():
            if rec.network == key:
                return rec
        return None
