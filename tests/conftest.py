"""
Pytest configuration for nftbridge tests.
"""
import sys
import os

import pytest

_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
_SRC_DIR = os.path.join(_ROOT, 'src')

if _SRC_DIR not in sys.path:
	sys.path.insert(0, _SRC_DIR)

from nftbridge.deployments import DeploymentStore  # noqa: E402
from nftbridge.devnet import Devnet  # noqa: E402
from nftbridge.networks import NetworkConfig  # noqa: E402
from nftbridge.provider import ProviderCache, reset_providers  # noqa: E402
from nftbridge.wallet import Account  # noqa: E402


AVALANCHE = NetworkConfig(
	key="avalanche-testnet",
	name="Avalanche Fuji Testnet",
	chain_id=43113,
	rpc_url="http://127.0.0.1:19650",
	block_explorer="https://testnet.snowtrace.io",
)
BASE = NetworkConfig(
	key="base-testnet",
	name="Base Sepolia Testnet",
	chain_id=84532,
	rpc_url="http://127.0.0.1:19651",
	block_explorer="https://sepolia.basescan.org",
)
AMOY = NetworkConfig(
	key="polygon-amoy",
	name="Polygon Amoy Testnet",
	chain_id=80002,
	rpc_url="http://127.0.0.1:19652",
	block_explorer="https://amoy.polygonscan.com",
)


@pytest.fixture(autouse=True)
def _clean_providers():
	reset_providers()
	yield
	reset_providers()


@pytest.fixture
def deployer():
	return Account.from_key("11" * 32)


@pytest.fixture
def alice():
	return Account.from_key("22" * 32)


@pytest.fixture
def bob():
	return Account.from_key("33" * 32)


@pytest.fixture
def devnet():
	"""Three in-process ledger nodes joined by a zero-latency router."""
	return Devnet([AVALANCHE, BASE, AMOY])


@pytest.fixture
def provider_cache(devnet):
	cache = ProviderCache()
	devnet.register_providers(cache)
	return cache


@pytest.fixture
def store(tmp_path):
	return DeploymentStore(str(tmp_path / "deployments.json"))


@pytest.fixture
def avalanche():
	return AVALANCHE


@pytest.fixture
def base():
	return BASE


@pytest.fixture
def amoy():
	return AMOY
