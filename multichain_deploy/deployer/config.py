"""Multichain deployment configuration.

The configuration names the Sygma environment, the networks known to the
deployer (JSON-RPC endpoint and chain id) and the subset of them
contracts are deployed to.

Configuration can be given in code:

.. code-block:: python

    config = MultichainConfig(
        environment=Environment.testnet,
        deployment_networks=["sepolia", "holesky"],
        networks={
            "sepolia": NetworkConfig(json_rpc_url="https://..."),
            "holesky": NetworkConfig(json_rpc_url="https://...", chain_id=17000),
        },
    )

or read from environment variables with :py:meth:`MultichainConfig.from_env`.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from eth_typing import HexAddress
from eth_utils import is_address, to_checksum_address
from web3 import HTTPProvider, Web3

from multichain_deploy.sygma.constants import (
    ADAPTER_ADDRESS,
    DEFAULT_POLL_INTERVAL,
    EXPLORER_URLS,
    INDEXER_URLS,
    LOCAL_EXPLORER_URL,
    LOCAL_INDEXER_URL,
    SHARED_CONFIG_URLS,
    Environment,
)
from multichain_deploy.utils import format_name_list

logger = logging.getLogger(__name__)


class MultichainConfigurationError(Exception):
    """The multichain configuration is incomplete or inconsistent."""


@dataclass(slots=True)
class NetworkConfig:
    """One network the deployer can talk to."""

    #: JSON-RPC endpoint
    json_rpc_url: str | None = None

    #: EVM chain id. Resolved over JSON-RPC when not given.
    chain_id: int | None = None


@dataclass(slots=True)
class MultichainConfig:
    """Deployer configuration.

    Validated on construction.

    :raise MultichainConfigurationError:
        A deployment network is not defined in :py:attr:`networks`,
        or the local environment lacks a shared configuration URL.
    """

    #: Sygma environment
    environment: Environment = Environment.testnet

    #: Network names contracts get deployed to
    deployment_networks: list[str] = field(default_factory=list)

    #: All known networks by name
    networks: dict[str, NetworkConfig] = field(default_factory=dict)

    #: Deploy adapter address, the same on every chain
    adapter_address: HexAddress = ADAPTER_ADDRESS

    #: Where compiled contract artifacts are looked up
    artifacts_path: Path = Path("artifacts")

    #: Seconds between bridge transfer status polls
    poll_interval: float = DEFAULT_POLL_INTERVAL

    #: Override the Sygma indexer API
    indexer_url: str | None = None

    #: Override the Sygma explorer
    explorer_url: str | None = None

    #: Override the Sygma shared domain configuration file
    shared_config_url: str | None = None

    def __post_init__(self):
        if isinstance(self.environment, str):
            self.environment = Environment(self.environment.lower())
        self.artifacts_path = Path(self.artifacts_path)
        self.validate()

    def validate(self):
        if not self.deployment_networks:
            logger.warning(
                "Missing Deployment Networks: no deployment networks configured. "
                "Deploy calls will need the networks given explicitly in their network arguments."
            )
            self.deployment_networks = []

        missing = [name for name in self.deployment_networks if name not in self.networks]
        if missing:
            raise MultichainConfigurationError(
                f"Missing Configuration for Deployment Networks: {format_name_list(missing)}\n"
                f"The above networks are listed in deployment_networks but they are not defined in networks. "
                f"Configured networks are: {format_name_list(self.networks)}"
            )

        if not is_address(self.adapter_address):
            raise MultichainConfigurationError(f"Bad adapter address {self.adapter_address}")
        self.adapter_address = to_checksum_address(self.adapter_address)

        if self.environment == Environment.local and not self.shared_config_url:
            raise MultichainConfigurationError("Local environment needs shared_config_url pointing to the local bridge domain configuration")

        assert self.poll_interval > 0, f"Bad poll interval {self.poll_interval}"

    def get_indexer_url(self) -> str:
        if self.indexer_url:
            return self.indexer_url
        return INDEXER_URLS.get(self.environment, LOCAL_INDEXER_URL)

    def get_explorer_url(self) -> str:
        if self.explorer_url:
            return self.explorer_url.rstrip("/")
        return EXPLORER_URLS.get(self.environment, LOCAL_EXPLORER_URL)

    def get_shared_config_url(self) -> str:
        if self.shared_config_url:
            return self.shared_config_url
        return SHARED_CONFIG_URLS[self.environment]

    def get_network(self, name: str) -> NetworkConfig:
        try:
            return self.networks[name]
        except KeyError:
            raise MultichainConfigurationError(f"Network {name} is not configured, we have {format_name_list(self.networks)}")

    def resolve_chain_id(self, name: str) -> int:
        """Get the chain id of a configured network.

        Asks the JSON-RPC node when the chain id is not configured.
        The answer is stored in the network config.
        """
        network = self.get_network(name)
        if network.chain_id is None:
            if not network.json_rpc_url:
                raise MultichainConfigurationError(f"Network {name} has neither chain_id nor json_rpc_url")
            web3 = Web3(HTTPProvider(network.json_rpc_url))
            network.chain_id = web3.eth.chain_id
            logger.info("Network %s resolved to chain id %d", name, network.chain_id)
        return network.chain_id

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None) -> "MultichainConfig":
        """Read the configuration from environment variables.

        - ``MULTICHAIN_ENVIRONMENT``: ``devnet``, ``testnet`` (default), ``mainnet`` or ``local``
        - ``DEPLOYMENT_NETWORKS``: comma separated network names, e.g. ``sepolia,holesky``
        - ``JSON_RPC_<NAME>``: JSON-RPC endpoint of each deployment network, e.g. ``JSON_RPC_SEPOLIA``
        - ``CHAIN_ID_<NAME>``: optional chain id of a network, skips asking the node
        - ``ADAPTER_ADDRESS``: optional deploy adapter address override
        - ``ARTIFACTS_PATH``: optional artifacts folder, default ``artifacts``
        - ``SYGMA_INDEXER_URL``, ``SYGMA_EXPLORER_URL``, ``SYGMA_SHARED_CONFIG_URL``: optional Sygma overrides
        - ``POLL_INTERVAL``: optional seconds between status polls
        """
        if environ is None:
            environ = os.environ

        environment = Environment(environ.get("MULTICHAIN_ENVIRONMENT", "testnet").lower())
        deployment_networks = [n.strip() for n in environ.get("DEPLOYMENT_NETWORKS", "").split(",") if n.strip()]

        networks = {}
        for name in deployment_networks:
            env_name = name.upper().replace("-", "_")
            json_rpc_url = environ.get(f"JSON_RPC_{env_name}")
            chain_id = environ.get(f"CHAIN_ID_{env_name}")
            if not json_rpc_url and not chain_id:
                # Reported as missing by validate()
                continue
            networks[name] = NetworkConfig(
                json_rpc_url=json_rpc_url,
                chain_id=int(chain_id) if chain_id else None,
            )

        return MultichainConfig(
            environment=environment,
            deployment_networks=deployment_networks,
            networks=networks,
            adapter_address=environ.get("ADAPTER_ADDRESS") or ADAPTER_ADDRESS,
            artifacts_path=Path(environ.get("ARTIFACTS_PATH", "artifacts")),
            poll_interval=float(environ.get("POLL_INTERVAL", DEFAULT_POLL_INTERVAL)),
            indexer_url=environ.get("SYGMA_INDEXER_URL") or None,
            explorer_url=environ.get("SYGMA_EXPLORER_URL") or None,
            shared_config_url=environ.get("SYGMA_SHARED_CONFIG_URL") or None,
        )
