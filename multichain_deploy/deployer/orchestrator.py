"""Multichain deploy orchestration.

Deploy one contract to many chains from a single funded transaction
on the origin chain, then follow the bridge transfers until every
destination has the contract.

Deployment is in two steps, as cross-chain execution takes minutes:

.. code-block:: python

    deployer = MultichainDeployer(config, client)
    deployer.initialize()

    response = deployer.deploy_multichain(
        "Greeter",
        {
            "sepolia": NetworkArgument(args=["Hello from Sepolia"]),
            "holesky": NetworkArgument(args=["Hello from Holesky"], init_data=InitCall("setName", ["Pepe"])),
        },
    )

    for network, address in zip(response.network_names, response.predicted_addresses):
        print(f"{network}: {address}")

    infos = deployer.get_deployment_info(response.transaction_hash, response.domain_ids)

The deploying account, the salt and the uniqueness flag decide the
contract address. Reuse them to get the same address again on new chains.
"""

import logging
import threading
from dataclasses import dataclass, field

from eth_typing import HexAddress
from hexbytes import HexBytes
from tqdm_loggable.auto import tqdm

from multichain_deploy.abi import parse_contract_abi, read_artifact
from multichain_deploy.adapter.contract import DeployRequest
from multichain_deploy.deployer.arguments import NetworkArgument, map_network_args
from multichain_deploy.deployer.client import DeployAdapterClient
from multichain_deploy.deployer.config import MultichainConfig
from multichain_deploy.sygma.constants import GAS_LIMIT_MULTIPLIER
from multichain_deploy.sygma.domains import DomainRegistry, fetch_domains
from multichain_deploy.sygma.session import SygmaSession, create_sygma_session
from multichain_deploy.sygma.status import FINAL_STATUSES, TransferStatus, normalise_tx_hash, poll_transfers_parallel
from multichain_deploy.utils import format_name_list, generate_salt, sum_fees

logger = logging.getLogger(__name__)


def _format_tx_hash(transaction_hash: HexBytes | str) -> str:
    if isinstance(transaction_hash, (bytes, bytearray)):
        transaction_hash = HexBytes(transaction_hash).hex()
    return normalise_tx_hash(transaction_hash)


class DeployerNotInitialised(Exception):
    """:py:meth:`MultichainDeployer.initialize` has not been called."""


class UnavailableRoutes(Exception):
    """Configured networks are not routed by the bridge in this environment."""


class DeploymentFailed(Exception):
    """The bridge reported failed deployments on some domains.

    Deployments on the other domains, including the origin chain, stand.
    """

    def __init__(self, message: str, failed: list[TransferStatus], succeeded: list["DeploymentInfo"]):
        super().__init__(message)
        #: Failed transfers
        self.failed = failed
        #: Domains that got the contract
        self.succeeded = succeeded


@dataclass(slots=True)
class DeployOptions:
    """Optional knobs of a multichain deploy."""

    #: 32 bytes salt. Random if not given.
    salt: bytes | str | None = None

    #: Deploy to a different address on every chain
    is_unique_per_chain: bool = False

    #: Gas limit of the execution on destination chains.
    #: Estimated from the creation code if not given.
    gas_limit: int | None = None

    #: Extra transaction parameters of the deploy transaction, e.g. ``gas`` or ``maxFeePerGas``.
    #: ``value`` is always the fee sum.
    tx_options: dict = field(default_factory=dict)


@dataclass(slots=True)
class DeployMultichainResponse:
    """What a deploy call returns."""

    #: Deploy transaction hash on the origin chain
    transaction_hash: HexBytes

    #: Destination domain ids, in network argument order
    domain_ids: list[int]

    #: Network names, in network argument order
    network_names: list[str]

    #: Contract address per destination, in network argument order
    predicted_addresses: list[HexAddress]

    #: Fortified salt the contract was deployed with
    fortified_salt: bytes

    #: Bridge fee paid per destination
    fees: list[int]


@dataclass(slots=True, frozen=True)
class DeploymentInfo:
    """Resolved deployment on one destination."""

    #: Domain name
    network: str

    #: Bridge domain id
    domain_id: int

    #: Deployed contract address, ``None`` if not known
    contract_address: HexAddress | None

    #: Bridge explorer page of the transfer
    explorer_url: str

    #: Deploy transaction hash on the origin chain
    transaction_hash: str


class MultichainDeployer:
    """Drive multichain deployments through the deploy adapter.

    Construction does no I/O. Call :py:meth:`initialize` once before
    anything else, to fetch the bridge domains and validate the configuration.
    """

    def __init__(
        self,
        config: MultichainConfig,
        client: DeployAdapterClient,
        session: SygmaSession | None = None,
    ):
        self.config = config
        self.client = client
        self.session = session

        #: Set up by :py:meth:`initialize`
        self.domains: DomainRegistry | None = None
        self.origin_domain_id: int | None = None

        # Predicted addresses by origin transaction hash, for deployment info
        self._predictions: dict[str, dict[int, HexAddress]] = {}

    def __repr__(self):
        return f"<MultichainDeployer {self.config.environment.value} origin domain {self.origin_domain_id}>"

    @property
    def initialised(self) -> bool:
        return self.domains is not None

    def initialize(self, domains: DomainRegistry | None = None) -> DomainRegistry:
        """Fetch the bridge domains and validate routes.

        Calling again is a no-op.

        :param domains:
            Use this registry instead of downloading the shared configuration,
            e.g. for a simulated network.

        :raise UnavailableRoutes:
            The origin chain or some deployment networks are not routed by the bridge.

        :raise multichain_deploy.sygma.domains.DomainNameConflict:
            A deployment network is named like a bridge domain of another chain.
        """
        if self.domains is not None:
            return self.domains

        environment = self.config.environment
        if self.session is None:
            self.session = create_sygma_session(environment, indexer_url=self.config.get_indexer_url())

        if domains is None:
            domains = fetch_domains(environment, shared_config_url=self.config.get_shared_config_url(), session=self.session)

        origin_chain_id = self.client.get_chain_id()
        origin_domain = domains.find_by_chain_id(origin_chain_id)
        if origin_domain is None:
            raise UnavailableRoutes(f"Origin chain {origin_chain_id} is not routed in Sygma for the {environment.value} environment")

        missed_routes = []
        for name in self.config.deployment_networks:
            chain_id = self.config.resolve_chain_id(name)
            if domains.add_alias(name, chain_id) is None:
                missed_routes.append(f"{name}({chain_id})")

        if missed_routes:
            raise UnavailableRoutes(
                f"Unavailable Networks in Deployment: The following networks from deployment_networks are not routed in Sygma "
                f"for the {environment.value} environment: {format_name_list(missed_routes)}\n"
                f"Please adjust deployment_networks to the supported routes of this environment."
            )

        adapter_domain_id = self.client.domain_id()
        if adapter_domain_id != origin_domain.id:
            logger.warning("Adapter reports domain %d, Sygma registry has %d for chain %d", adapter_domain_id, origin_domain.id, origin_chain_id)

        self.domains = domains
        self.origin_domain_id = origin_domain.id
        logger.info("Multichain deployer ready, origin %s domain %d, %d domains routed", origin_domain.name, origin_domain.id, len(domains))
        return domains

    def _check_initialised(self):
        if self.domains is None:
            raise DeployerNotInitialised("Call MultichainDeployer.initialize() first")

    def deploy_multichain(
        self,
        contract_name: str,
        network_args: dict[str, NetworkArgument],
        options: DeployOptions | None = None,
    ) -> DeployMultichainResponse:
        """Deploy a compiled contract by name.

        The artifact is read from :py:attr:`MultichainConfig.artifacts_path`.
        """
        self._check_initialised()
        artifact = read_artifact(self.config.artifacts_path, contract_name)
        return self.deploy_multichain_bytecode(artifact["bytecode"], artifact["abi"], network_args, options)

    def deploy_multichain_bytecode(
        self,
        bytecode: bytes | str,
        abi: list[dict],
        network_args: dict[str, NetworkArgument],
        options: DeployOptions | None = None,
    ) -> DeployMultichainResponse:
        """Deploy contract creation code to every network in ``network_args``.

        Returns once the origin transaction is mined. Remote deployments
        happen later, follow them with :py:meth:`get_deployment_info`.

        :param bytecode:
            Contract creation code without constructor arguments

        :param abi:
            Contract ABI, to encode constructor arguments and init calls

        :param network_args:
            Network name → arguments. Names are bridge domain names
            or configured network names.

        :raise multichain_deploy.deployer.arguments.UnavailableNetworks:
            A network is not routed by the bridge.
        """
        self._check_initialised()
        if options is None:
            options = DeployOptions()

        init_code = bytes(HexBytes(bytecode))
        assert init_code, "Empty contract creation code"

        interface = parse_contract_abi(abi)
        mapped = map_network_args(interface, network_args, self.domains)

        salt = HexBytes(options.salt) if options.salt is not None else generate_salt()
        assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"

        gas_limit = options.gas_limit
        if gas_limit is None:
            gas_limit = self.estimate_gas_limit(init_code, mapped.constructor_args)

        request = DeployRequest(
            init_code=init_code,
            gas_limit=gas_limit,
            salt=bytes(salt),
            is_unique_per_chain=options.is_unique_per_chain,
            constructor_args=mapped.constructor_args,
            init_datas=mapped.init_datas,
            destination_domain_ids=mapped.deploy_domain_ids,
        )

        fees = self.client.calculate_deploy_fee(request)
        value = sum_fees(fees)
        logger.info("Deploy fees %s, total %d wei, for domains %s", fees, value, mapped.deploy_domain_ids)

        tx_hash = self.client.deploy(request, fees, value, tx_options=options.tx_options)

        predicted_addresses = []
        for domain_id in mapped.deploy_domain_ids:
            chain_id = self.domains.get_by_id(domain_id).chain_id
            predicted_addresses.append(self.client.compute_contract_address(request.salt, request.is_unique_per_chain, chain_id))

        for name, domain_id, address in zip(mapped.network_names, mapped.deploy_domain_ids, predicted_addresses):
            where = "local" if domain_id == self.origin_domain_id else "remote"
            logger.info("Contract on %s (domain %d, %s) will be at %s", name, domain_id, where, address)

        self._predictions[_format_tx_hash(tx_hash)] = dict(zip(mapped.deploy_domain_ids, predicted_addresses))

        return DeployMultichainResponse(
            transaction_hash=tx_hash,
            domain_ids=mapped.deploy_domain_ids,
            network_names=mapped.network_names,
            predicted_addresses=predicted_addresses,
            fortified_salt=self.client.fortify(request.salt, request.is_unique_per_chain),
            fees=fees,
        )

    def estimate_gas_limit(self, init_code: bytes, constructor_args: list[bytes]) -> int:
        """Gas limit for remote executions.

        The largest creation estimate over the distinct constructor arguments,
        with :py:data:`~multichain_deploy.sygma.constants.GAS_LIMIT_MULTIPLIER` headroom.
        """
        estimates = [self.client.estimate_deploy_gas(init_code + args) for args in dict.fromkeys(constructor_args)]
        return int(max(estimates) * GAS_LIMIT_MULTIPLIER)

    def get_deployment_info(
        self,
        transaction_hash: HexBytes | str,
        domain_ids: list[int],
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        progress: bool = True,
    ) -> list[DeploymentInfo]:
        """Wait until the bridge resolves the deployment on every domain.

        Each remote domain is polled in its own thread at :py:attr:`MultichainConfig.poll_interval`.
        The origin domain is deployed in the deploy transaction itself and is not polled.

        :param timeout:
            Seconds to wait. ``None`` waits as long as it takes.

        :param cancel_event:
            Set to stop waiting from another thread.

        :param progress:
            Show a progress bar of resolved domains.

        :return:
            Deployment infos in ``domain_ids`` order.

        :raise DeploymentFailed:
            Some domains failed. Raised only after every domain resolved.
        """
        self._check_initialised()
        transaction_hash = _format_tx_hash(transaction_hash)
        explorer_url = self.get_explorer_url(transaction_hash)
        predictions = self._predictions.get(transaction_hash, {})

        remote_domain_ids = [d for d in domain_ids if d != self.origin_domain_id]

        progress_bar = tqdm(total=len(remote_domain_ids), desc="Multichain deploy", unit="domain", disable=not progress)
        lock = threading.Lock()
        resolved: set[int] = set()

        def _on_poll(domain_id: int, status: str, attempt: int):
            with lock:
                if status in FINAL_STATUSES and domain_id not in resolved:
                    resolved.add(domain_id)
                    progress_bar.update(1)
                progress_bar.set_postfix_str(f"domain {domain_id}: {status}, attempt {attempt}")

        try:
            statuses = poll_transfers_parallel(
                self.session,
                transaction_hash,
                remote_domain_ids,
                poll_interval=self.config.poll_interval,
                timeout=timeout,
                cancel_event=cancel_event,
                on_poll=_on_poll,
            )
        finally:
            progress_bar.close()

        status_by_domain = {s.to_domain_id: s for s in statuses}

        infos = []
        failed = []
        for domain_id in domain_ids:
            status = status_by_domain.get(domain_id)
            if status is not None and status.is_failed:
                failed.append(status)
                continue
            domain = self.domains.get_by_id(domain_id)
            info = DeploymentInfo(
                network=domain.name,
                domain_id=domain.id,
                contract_address=predictions.get(domain.id),
                explorer_url=explorer_url,
                transaction_hash=transaction_hash,
            )
            logger.info("Contract deployed to %s (domain %d): %s", info.network, info.domain_id, info.explorer_url)
            infos.append(info)

        if failed:
            names = [self._describe_domain(s.to_domain_id) for s in failed]
            raise DeploymentFailed(
                f"Deployment failed on {format_name_list(names)}, see {explorer_url}",
                failed=failed,
                succeeded=infos,
            )

        return infos

    def _describe_domain(self, domain_id: int) -> str:
        domain = self.domains.get_by_id(domain_id)
        return f"{domain.name}({domain_id})"

    def get_explorer_url(self, transaction_hash: HexBytes | str) -> str:
        """Bridge explorer page of the deploy transaction."""
        return f"{self.config.get_explorer_url()}/transfer/{_format_tx_hash(transaction_hash)}"
