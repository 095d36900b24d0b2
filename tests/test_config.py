"""Multichain deployer configuration."""

from pathlib import Path
from unittest.mock import patch

import pytest

from multichain_deploy.deployer.config import MultichainConfig, MultichainConfigurationError, NetworkConfig
from multichain_deploy.sygma.constants import ADAPTER_ADDRESS, EXPLORER_URLS, INDEXER_URLS, SHARED_CONFIG_URLS, Environment


def test_missing_network_configuration():
    """Every missing network is named."""
    with pytest.raises(MultichainConfigurationError, match="Missing Configuration for Deployment Networks: holesky and mumbai"):
        MultichainConfig(
            deployment_networks=["sepolia", "holesky", "mumbai"],
            networks={"sepolia": NetworkConfig(json_rpc_url="http://localhost:8545")},
        )


def test_empty_deployment_networks_warns(caplog):
    config = MultichainConfig()
    assert config.deployment_networks == []
    assert "Missing Deployment Networks" in caplog.text


def test_bad_adapter_address():
    with pytest.raises(MultichainConfigurationError):
        MultichainConfig(adapter_address="0x1234")


def test_local_environment_needs_shared_config():
    with pytest.raises(MultichainConfigurationError, match="shared_config_url"):
        MultichainConfig(environment="local")

    config = MultichainConfig(environment="LOCAL", shared_config_url="http://localhost:8080/config.json")
    assert config.environment == Environment.local
    assert config.get_shared_config_url() == "http://localhost:8080/config.json"
    assert config.get_indexer_url() == "http://localhost:8000"


def test_environment_urls():
    config = MultichainConfig(environment=Environment.mainnet)
    assert config.get_indexer_url() == INDEXER_URLS[Environment.mainnet]
    assert config.get_explorer_url() == EXPLORER_URLS[Environment.mainnet]
    assert config.get_shared_config_url() == SHARED_CONFIG_URLS[Environment.mainnet]

    config = MultichainConfig(explorer_url="https://scan.example/", indexer_url="https://api.example")
    assert config.get_explorer_url() == "https://scan.example"
    assert config.get_indexer_url() == "https://api.example"


def test_resolve_chain_id_configured():
    config = MultichainConfig(deployment_networks=["sepolia"], networks={"sepolia": NetworkConfig(chain_id=11155111)})
    assert config.resolve_chain_id("sepolia") == 11155111

    with pytest.raises(MultichainConfigurationError, match="not configured"):
        config.resolve_chain_id("holesky")


def test_resolve_chain_id_over_json_rpc():
    """The node is asked once, the answer is kept."""
    config = MultichainConfig(deployment_networks=["holesky"], networks={"holesky": NetworkConfig(json_rpc_url="http://localhost:8545")})

    with patch("multichain_deploy.deployer.config.Web3") as web3_class:
        web3_class.return_value.eth.chain_id = 17000
        assert config.resolve_chain_id("holesky") == 17000
        assert config.resolve_chain_id("holesky") == 17000

    web3_class.assert_called_once()
    assert config.networks["holesky"].chain_id == 17000


def test_from_env():
    config = MultichainConfig.from_env(
        {
            "MULTICHAIN_ENVIRONMENT": "mainnet",
            "DEPLOYMENT_NETWORKS": "ethereum, base-mainnet",
            "JSON_RPC_ETHEREUM": "https://eth.example",
            "CHAIN_ID_BASE_MAINNET": "8453",
            "ARTIFACTS_PATH": "out",
            "POLL_INTERVAL": "1.5",
        }
    )

    assert config.environment == Environment.mainnet
    assert config.deployment_networks == ["ethereum", "base-mainnet"]
    assert config.networks["ethereum"].json_rpc_url == "https://eth.example"
    assert config.networks["ethereum"].chain_id is None
    assert config.networks["base-mainnet"].chain_id == 8453
    assert config.artifacts_path == Path("out")
    assert config.poll_interval == 1.5
    assert config.adapter_address == ADAPTER_ADDRESS


def test_from_env_missing_rpc():
    with pytest.raises(MultichainConfigurationError, match="sepolia"):
        MultichainConfig.from_env({"DEPLOYMENT_NETWORKS": "sepolia"})
