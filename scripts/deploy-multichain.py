"""Deploy a compiled contract to several chains with one transaction.

The contract is deployed through the cross-chain deploy adapter.
One funded transaction on the origin chain deploys the contract locally
and sends a Sygma bridge message to every other chain, where the
adapter deploys it to a predictable address.

The deployer needs native token on the origin chain to pay the bridge fees.

Environment variables
---------------------

``SIMULATE``
    Set to ``true`` to run against an in-process simulated bridge network.
    No JSON-RPC endpoints or private key needed. ``DEPLOYMENT_NETWORKS``
    names the simulated domains.

``CONTRACT_NAME``
    Contract to deploy. Its artifact is looked up under ``ARTIFACTS_PATH``.

``ARTIFACTS_PATH``
    Hardhat ``artifacts`` or Foundry ``out`` folder. Defaults to ``artifacts``.

``CONSTRUCTOR_ARGS``
    JSON object of network name → constructor argument list,
    e.g. ``{"sepolia": ["Hello"], "holesky": ["Hi"]}``.
    Networks missing here get no arguments.

``INIT_CALLS``
    Optional JSON object of network name → ``[method_name, [args...]]``.

``MULTICHAIN_ENVIRONMENT``
    Sygma environment: ``testnet`` (default), ``mainnet``, ``devnet`` or ``local``.

``DEPLOYMENT_NETWORKS``
    Comma-separated network names to deploy to, e.g. ``sepolia,holesky``.

``ORIGIN_NETWORK``
    Network to send the deploy transaction on. Defaults to the first deployment network.

``JSON_RPC_<NETWORK>``
    RPC URL of each deployment network, e.g. ``JSON_RPC_SEPOLIA``.

``PRIVATE_KEY``
    Deployer private key. Required in real (non-simulate) mode.

``SALT``
    Optional 32 bytes hex salt. Reuse a salt to get the same address again.
    Defaults to random.

``UNIQUE_PER_CHAIN``
    Set to ``true`` for a different contract address on every chain.

``LOG_LEVEL``
    Defaults to ``info``.

Testnet deployment
------------------

.. code-block:: shell

    CONTRACT_NAME=Greeter \\
    DEPLOYMENT_NETWORKS=sepolia,holesky \\
    CONSTRUCTOR_ARGS='{"sepolia": ["Hello from Sepolia"], "holesky": ["Hello from Holesky"]}' \\
    JSON_RPC_SEPOLIA="https://..." \\
    JSON_RPC_HOLESKY="https://..." \\
    PRIVATE_KEY=0x... \\
    poetry run python scripts/deploy-multichain.py

Simulation
----------

.. code-block:: shell

    SIMULATE=true \\
    CONTRACT_NAME=Greeter \\
    DEPLOYMENT_NETWORKS=sepolia,holesky \\
    poetry run python scripts/deploy-multichain.py
"""

import json
import logging
import os
import threading

from eth_account import Account
from eth_account.signers.local import LocalAccount
from tabulate import tabulate
from web3 import HTTPProvider, Web3

from multichain_deploy.adapter.simulation import DEFAULT_DEPLOYER, SimulatedNetwork
from multichain_deploy.deployer.arguments import InitCall, NetworkArgument
from multichain_deploy.deployer.client import DeployAdapterClient, SimulatedDeployAdapter, Web3DeployAdapter
from multichain_deploy.deployer.config import MultichainConfig
from multichain_deploy.deployer.orchestrator import DeploymentFailed, DeployOptions, MultichainDeployer
from multichain_deploy.sygma.domains import DomainRegistry
from multichain_deploy.testing import SimulatedSygmaSession
from multichain_deploy.utils import setup_console_logging

logger = logging.getLogger(__name__)

#: Simulated domain ids start from here
SIMULATED_FIRST_DOMAIN_ID = 1

#: Simulated chain ids start from here
SIMULATED_FIRST_CHAIN_ID = 31337


def read_network_args(network_names: list[str]) -> dict[str, NetworkArgument]:
    """Build per network arguments from ``CONSTRUCTOR_ARGS`` and ``INIT_CALLS``."""
    constructor_args = json.loads(os.environ.get("CONSTRUCTOR_ARGS") or "{}")
    init_calls = json.loads(os.environ.get("INIT_CALLS") or "{}")

    unknown = (set(constructor_args) | set(init_calls)) - set(network_names)
    assert not unknown, f"Arguments given for networks not in DEPLOYMENT_NETWORKS: {unknown}"

    network_args = {}
    for name in network_names:
        init_data = None
        if name in init_calls:
            method_name, method_args = init_calls[name]
            init_data = InitCall(method_name, method_args)
        network_args[name] = NetworkArgument(args=constructor_args.get(name, []), init_data=init_data)
    return network_args


def setup_simulated(config: MultichainConfig, origin_network: str) -> tuple[SimulatedNetwork, DomainRegistry, DeployAdapterClient]:
    """Simulated network with one domain per deployment network."""
    domains = {}
    names = {}
    for idx, name in enumerate(config.deployment_networks):
        domain_id = SIMULATED_FIRST_DOMAIN_ID + idx
        domains[domain_id] = config.resolve_chain_id(name)
        names[domain_id] = name

    network = SimulatedNetwork(domains)
    origin_domain_id = SIMULATED_FIRST_DOMAIN_ID + config.deployment_networks.index(origin_network)
    network.fund(origin_domain_id, DEFAULT_DEPLOYER, 100 * 10**18)
    return network, network.get_domains(names), SimulatedDeployAdapter(network, origin_domain_id, DEFAULT_DEPLOYER)


def setup_real(config: MultichainConfig, origin_network: str) -> DeployAdapterClient:
    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "PRIVATE_KEY environment variable is required in real mode"
    account: LocalAccount = Account.from_key(private_key)

    json_rpc_url = config.get_network(origin_network).json_rpc_url
    assert json_rpc_url, f"JSON_RPC_{origin_network.upper()} missing"
    web3 = Web3(HTTPProvider(json_rpc_url))

    balance = web3.eth.get_balance(account.address)
    print(f"  Deployer: {account.address}, balance {balance / 10**18:.6f} on {origin_network}")
    if balance == 0:
        print(f"  Fund {account.address} on {origin_network} first.")
        raise SystemExit(1)

    return Web3DeployAdapter(web3, config.adapter_address, account=account)


def main():
    threading.current_thread().name = "main"
    setup_console_logging("info", coloured_threads=True)

    simulate = os.environ.get("SIMULATE", "").lower() in ("true", "1", "yes")
    contract_name = os.environ.get("CONTRACT_NAME")
    assert contract_name, "CONTRACT_NAME environment variable is required"

    salt = os.environ.get("SALT") or None
    is_unique_per_chain = os.environ.get("UNIQUE_PER_CHAIN", "").lower() in ("true", "1", "yes")

    if simulate:
        # Simulated networks need no JSON-RPC, register them before validation
        names = [n.strip() for n in os.environ.get("DEPLOYMENT_NETWORKS", "").split(",") if n.strip()]
        environ = dict(os.environ)
        for idx, name in enumerate(names):
            environ.setdefault(f"CHAIN_ID_{name.upper().replace('-', '_')}", str(SIMULATED_FIRST_CHAIN_ID + idx))
        config = MultichainConfig.from_env(environ)
    else:
        config = MultichainConfig.from_env()

    assert config.deployment_networks, "DEPLOYMENT_NETWORKS environment variable is required"
    origin_network = os.environ.get("ORIGIN_NETWORK") or config.deployment_networks[0]

    print("=" * 70)
    print("Multichain deployment")
    print("=" * 70)
    print(f"  Contract: {contract_name}")
    print(f"  Environment: {config.environment.value}")
    print(f"  Mode: {'SIMULATE (in-process bridge)' if simulate else 'REAL (live networks)'}")
    print(f"  Origin: {origin_network}")
    print(f"  Networks: {', '.join(config.deployment_networks)}")
    print(f"  Unique per chain: {is_unique_per_chain}")
    print()

    network_args = read_network_args(config.deployment_networks)
    options = DeployOptions(salt=salt, is_unique_per_chain=is_unique_per_chain)

    if simulate:
        network, domains, client = setup_simulated(config, origin_network)
        deployer = MultichainDeployer(config, client, session=SimulatedSygmaSession(network))
        deployer.initialize(domains=domains)
    else:
        client = setup_real(config, origin_network)
        deployer = MultichainDeployer(config, client)
        deployer.initialize()

    response = deployer.deploy_multichain(contract_name, network_args, options)

    print("\n" + "=" * 70)
    print("Deploy transaction")
    print("=" * 70)
    print(f"  Transaction: 0x{bytes(response.transaction_hash).hex()}")
    print(f"  Fortified salt: 0x{response.fortified_salt.hex()}")
    rows = [[name, domain_id, address, f"{fee / 10**18:.6f}"] for name, domain_id, fee, address in zip(response.network_names, response.domain_ids, response.fees, response.predicted_addresses)]
    print(tabulate(rows, headers=["Network", "Domain", "Contract address", "Fee"], tablefmt="simple"))

    print("\n" + "=" * 70)
    print("Cross-chain deployments")
    print("=" * 70)
    try:
        infos = deployer.get_deployment_info(response.transaction_hash, response.domain_ids)
    except DeploymentFailed as e:
        rows = [[info.network, info.domain_id, info.contract_address, "deployed"] for info in e.succeeded]
        rows += [[deployer.domains.get_by_id(status.to_domain_id).name, status.to_domain_id, "", "FAILED"] for status in e.failed]
        print(tabulate(rows, headers=["Network", "Domain", "Contract address", "Status"], tablefmt="simple"))
        print(f"\n{e}")
        raise SystemExit(1)

    rows = [[info.network, info.domain_id, info.contract_address] for info in infos]
    print(tabulate(rows, headers=["Network", "Domain", "Contract address"], tablefmt="simple"))
    print(f"\n  Explorer: {deployer.get_explorer_url(response.transaction_hash)}")

    print("\nDone!")


if __name__ == "__main__":
    main()
