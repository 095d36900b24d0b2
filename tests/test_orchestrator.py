"""Multichain deployment end to end on the simulated bridge network.

The simulated indexer relays pending deposits whenever it is polled,
so :py:meth:`MultichainDeployer.get_deployment_info` resolves on the first poll.
"""

import json
from unittest.mock import MagicMock

import pytest
from hexbytes import HexBytes

from multichain_deploy.deployer.arguments import DuplicateNetworks, InitCall, NetworkArgument, UnavailableNetworks
from multichain_deploy.deployer.config import MultichainConfig, NetworkConfig
from multichain_deploy.deployer.orchestrator import (
    DeployerNotInitialised,
    DeploymentFailed,
    DeployOptions,
    MultichainDeployer,
    UnavailableRoutes,
)
from multichain_deploy.sygma.constants import GAS_LIMIT_MULTIPLIER, LOCAL_EXPLORER_URL, Environment
from multichain_deploy.sygma.domains import DomainNameConflict, DomainRegistry
from multichain_deploy.testing import (
    DOMAIN_ID,
    GREETER_ABI,
    GREETER_CODE,
    OTHER_DOMAIN_ID_1,
    OTHER_DOMAIN_ID_2,
    TEST_DOMAINS,
    TEST_DOMAIN_NAMES,
    Greeter,
    SimulatedSygmaSession,
)

SALT = HexBytes("0x" + "5a" * 32)


def make_config(network, deployment_networks: list[str] | None = None, extra_networks: dict[str, int] | None = None, **kwargs) -> MultichainConfig:
    chain_ids = {name: TEST_DOMAINS[domain_id] for domain_id, name in TEST_DOMAIN_NAMES.items()}
    chain_ids.update(extra_networks or {})
    if deployment_networks is None:
        deployment_networks = list(TEST_DOMAIN_NAMES.values())
    return MultichainConfig(
        environment=Environment.local,
        deployment_networks=deployment_networks,
        networks={name: NetworkConfig(chain_id=chain_id) for name, chain_id in chain_ids.items()},
        adapter_address=network.adapter_address,
        poll_interval=0.01,
        shared_config_url="http://simulated/share/config.json",
        **kwargs,
    )


@pytest.fixture()
def session(network) -> SimulatedSygmaSession:
    return SimulatedSygmaSession(network)


@pytest.fixture()
def multichain_deployer(network, client, domains, session) -> MultichainDeployer:
    deployer = MultichainDeployer(make_config(network), client, session=session)
    deployer.initialize(domains)
    return deployer


def greet_everywhere(init_on_holesky: InitCall | None = None) -> dict[str, NetworkArgument]:
    return {
        "goerli": NetworkArgument(args=["Hello Goerli"]),
        "sepolia": NetworkArgument(args=["Hello Sepolia"], init_data=InitCall("setName", ["Pepe"])),
        "holesky": NetworkArgument(args=["Hello Holesky"], init_data=init_on_holesky),
    }


def test_initialize(multichain_deployer):
    assert multichain_deployer.initialised
    assert multichain_deployer.origin_domain_id == DOMAIN_ID


def test_initialize_fetches_shared_config(network, client, domains):
    """Without an injected registry the domains come from the shared configuration file."""
    session = MagicMock()
    session.get.return_value.json.return_value = {"domains": [{"id": d.id, "chainId": d.chain_id, "name": d.name, "type": "evm"} for d in domains]}

    deployer = MultichainDeployer(make_config(network), client, session=session)
    deployer.initialize()

    assert session.get.call_args.args[0] == "http://simulated/share/config.json"
    assert deployer.origin_domain_id == DOMAIN_ID
    assert deployer.domains.get_by_name("holesky").id == OTHER_DOMAIN_ID_2


def test_not_initialised(network, client):
    deployer = MultichainDeployer(make_config(network), client)
    assert not deployer.initialised
    with pytest.raises(DeployerNotInitialised):
        deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, greet_everywhere())
    with pytest.raises(DeployerNotInitialised):
        deployer.get_deployment_info("0x" + "00" * 32, [OTHER_DOMAIN_ID_1])


def test_initialize_unrouted_deployment_networks(network, client, domains, session):
    """All unrouted networks are listed with their chain ids."""
    config = make_config(
        network,
        deployment_networks=["sepolia", "mumbai", "fuji"],
        extra_networks={"mumbai": 80001, "fuji": 43113},
    )
    deployer = MultichainDeployer(config, client, session=session)
    with pytest.raises(UnavailableRoutes, match=r"mumbai\(80001\) and fuji\(43113\)"):
        deployer.initialize(domains)
    assert not deployer.initialised


def test_initialize_domain_name_of_another_chain(network, client, domains, session):
    """A network configured as sepolia but pointing at the holesky chain is refused."""
    config = make_config(network, deployment_networks=["sepolia"], extra_networks={"sepolia": 17000})
    deployer = MultichainDeployer(config, client, session=session)
    with pytest.raises(DomainNameConflict, match=r"sepolia\(20\) is chain 11155111"):
        deployer.initialize(domains)
    assert not deployer.initialised


def test_initialize_unrouted_origin(network, client, domains, session):
    remote_only = DomainRegistry(d for d in domains if d.id != DOMAIN_ID)
    deployer = MultichainDeployer(make_config(network, deployment_networks=["sepolia"]), client, session=session)
    with pytest.raises(UnavailableRoutes, match="Origin chain 5"):
        deployer.initialize(remote_only)


def test_deploy_multichain(network, multichain_deployer, deployer):
    """Same address on every chain, local deployment right away, remote ones after relaying."""
    origin = network.get_chain(DOMAIN_ID)
    balance_before = origin.get_balance(deployer)

    response = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, greet_everywhere(), DeployOptions(salt=SALT))

    assert response.domain_ids == [DOMAIN_ID, OTHER_DOMAIN_ID_1, OTHER_DOMAIN_ID_2]
    assert response.network_names == ["goerli", "sepolia", "holesky"]
    assert len(set(response.predicted_addresses)) == 1
    assert response.fees[0] == 0
    assert origin.get_balance(deployer) == balance_before - sum(response.fees)

    address = response.predicted_addresses[0]
    assert origin.get_contract(address).greeting == "Hello Goerli"
    assert not network.get_chain(OTHER_DOMAIN_ID_1).has_code(address)

    infos = multichain_deployer.get_deployment_info(response.transaction_hash, response.domain_ids, progress=False)

    assert [i.domain_id for i in infos] == response.domain_ids
    assert [i.network for i in infos] == ["goerli", "sepolia", "holesky"]
    assert all(i.contract_address == address for i in infos)
    assert infos[0].explorer_url.startswith(f"{LOCAL_EXPLORER_URL}/transfer/0x")

    sepolia_greeter = network.get_chain(OTHER_DOMAIN_ID_1).get_contract(address)
    assert isinstance(sepolia_greeter, Greeter)
    assert sepolia_greeter.greeting == "Hello Sepolia"
    assert sepolia_greeter.name == "Pepe"
    assert network.get_chain(OTHER_DOMAIN_ID_2).get_contract(address).greeting == "Hello Holesky"


def test_deploy_same_salt_same_address(network, multichain_deployer):
    """A deterministic salt gives the address again on a later deployment."""
    first = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, {"sepolia": NetworkArgument(args=["a"])}, DeployOptions(salt=SALT))
    second = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, {"holesky": NetworkArgument(args=["b"])}, DeployOptions(salt=SALT))
    assert first.predicted_addresses == second.predicted_addresses
    assert first.fortified_salt == second.fortified_salt


def test_deploy_unique_per_chain(network, multichain_deployer):
    response = multichain_deployer.deploy_multichain_bytecode(
        GREETER_CODE,
        GREETER_ABI,
        greet_everywhere(),
        DeployOptions(salt=SALT, is_unique_per_chain=True),
    )
    assert len(set(response.predicted_addresses)) == 3

    infos = multichain_deployer.get_deployment_info(response.transaction_hash, response.domain_ids, progress=False)
    for info in infos:
        assert network.get_chain(info.domain_id).has_code(info.contract_address)


def test_deploy_random_salt(multichain_deployer):
    """Without a salt every deployment gets a new address."""
    args = {"sepolia": NetworkArgument(args=["a"])}
    first = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, args)
    second = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, args)
    assert first.predicted_addresses != second.predicted_addresses


def test_deploy_unavailable_network(multichain_deployer):
    with pytest.raises(UnavailableNetworks, match="mumbai"):
        multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, {"mumbai": NetworkArgument(args=["a"])})


def test_deploy_configured_network_alias(network, client, domains, session):
    """A network configured under its own name deploys to the domain of its chain."""
    config = make_config(network, deployment_networks=["my-holesky"], extra_networks={"my-holesky": 17000})
    multichain_deployer = MultichainDeployer(config, client, session=session)
    multichain_deployer.initialize(domains)

    response = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, {"my-holesky": NetworkArgument(args=["a"])})
    assert response.domain_ids == [OTHER_DOMAIN_ID_2]


def test_origin_domain_not_polled(multichain_deployer, session):
    """Local deployment is part of the deploy transaction, the indexer is not asked."""
    response = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, {"goerli": NetworkArgument(args=["a"])})

    (info,) = multichain_deployer.get_deployment_info(response.transaction_hash, response.domain_ids, progress=False)

    assert info.domain_id == DOMAIN_ID
    assert session.requests == []


def test_deployment_failed(network, multichain_deployer):
    """A failing remote init is reported after the other domains resolved."""
    response = multichain_deployer.deploy_multichain_bytecode(
        GREETER_CODE,
        GREETER_ABI,
        greet_everywhere(init_on_holesky=InitCall("setName", [""])),
        DeployOptions(salt=SALT),
    )

    with pytest.raises(DeploymentFailed, match=r"holesky\(30\)") as exc_info:
        multichain_deployer.get_deployment_info(response.transaction_hash, response.domain_ids, progress=False)

    e = exc_info.value
    assert [s.to_domain_id for s in e.failed] == [OTHER_DOMAIN_ID_2]
    assert [i.domain_id for i in e.succeeded] == [DOMAIN_ID, OTHER_DOMAIN_ID_1]

    address = response.predicted_addresses[0]
    assert network.get_chain(OTHER_DOMAIN_ID_1).has_code(address)
    assert not network.get_chain(OTHER_DOMAIN_ID_2).has_code(address)


def test_deployment_info_timeout(network, client, domains):
    """Without relayers the transfers stay pending."""
    multichain_deployer = MultichainDeployer(make_config(network), client, session=SimulatedSygmaSession(network, relay_on_poll=False))
    multichain_deployer.initialize(domains)
    response = multichain_deployer.deploy_multichain_bytecode(GREETER_CODE, GREETER_ABI, {"sepolia": NetworkArgument(args=["a"])})

    with pytest.raises(TimeoutError):
        multichain_deployer.get_deployment_info(response.transaction_hash, response.domain_ids, timeout=0.1, progress=False)


def test_estimate_gas_limit(multichain_deployer):
    """The largest creation estimate over distinct constructor arguments, with headroom."""
    code = b"\x60" * 100
    gas_limit = multichain_deployer.estimate_gas_limit(code, [b"\x00" * 32, b"\x00" * 64, b"\x00" * 32])
    expected = multichain_deployer.client.estimate_deploy_gas(code + b"\x00" * 64)
    assert gas_limit == int(expected * GAS_LIMIT_MULTIPLIER)


def test_deploy_multichain_from_artifact(network, client, domains, session, tmp_path):
    """Contracts are looked up by name in the artifacts folder."""
    artifact_folder = tmp_path / "contracts" / "Greeter.sol"
    artifact_folder.mkdir(parents=True)
    (artifact_folder / "Greeter.json").write_text(json.dumps({"abi": GREETER_ABI, "bytecode": "0x" + bytes(GREETER_CODE).hex()}))

    multichain_deployer = MultichainDeployer(make_config(network, artifacts_path=tmp_path), client, session=session)
    multichain_deployer.initialize(domains)

    response = multichain_deployer.deploy_multichain("Greeter", {"goerli": NetworkArgument(args=["From artifact"])})
    assert network.get_chain(DOMAIN_ID).get_contract(response.predicted_addresses[0]).greeting == "From artifact"


def test_deploy_same_domain_twice_rejected(network, multichain_deployer, deployer):
    """Two names for one domain are refused before anything is paid."""
    origin = network.get_chain(DOMAIN_ID)
    balance_before = origin.get_balance(deployer)

    with pytest.raises(DuplicateNetworks, match="sepolia and Sepolia"):
        multichain_deployer.deploy_multichain_bytecode(
            GREETER_CODE,
            GREETER_ABI,
            {"sepolia": NetworkArgument(args=["a"]), "Sepolia": NetworkArgument(args=["b"])},
        )

    assert origin.get_balance(deployer) == balance_before
    assert network.relay_deposits() == []
