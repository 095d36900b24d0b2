"""Shared fixtures: a three domain simulated bridge network."""

import pytest

from multichain_deploy.adapter.simulation import DEFAULT_DEPLOYER, SimulatedNetwork
from multichain_deploy.deployer.client import SimulatedDeployAdapter
from multichain_deploy.sygma.domains import DomainRegistry
from multichain_deploy.testing import DOMAIN_ID, TEST_DOMAIN_NAMES, create_test_network


@pytest.fixture()
def network() -> SimulatedNetwork:
    return create_test_network()


@pytest.fixture()
def deployer() -> str:
    return DEFAULT_DEPLOYER


@pytest.fixture()
def domains(network) -> DomainRegistry:
    return network.get_domains(TEST_DOMAIN_NAMES)


@pytest.fixture()
def client(network, deployer) -> SimulatedDeployAdapter:
    return SimulatedDeployAdapter(network, DOMAIN_ID, deployer)
