"""Simulated bridge environment for tests and dry runs.

Mock collaborators of the deploy adapter, installed at fixed system addresses
the way :py:mod:`multichain_deploy.adapter.chain` models ``anvil_setCode``:

- :py:class:`CreateXFactory`: guarded CREATE3 factory
- :py:class:`MockFeeHandler`: flat fee divided by the destination domain id
- :py:class:`MockBridge`: generic message deposits and proposal execution
- :py:class:`SimulatedNetwork`: several chains with the adapter
  at the same address on each, plus a relayer

Example::

    network = SimulatedNetwork({1: 5, 2: 11155111})
    network.fund(1, deployer, 10**18)

    adapter = network.get_adapter(1)
    fees = adapter.calculate_deploy_fee(deployer, request)
    tx = adapter.deploy(deployer, sum(fees), request, fees)

    # Play the relayer
    results = network.relay_deposits()
"""

import logging
from dataclasses import dataclass

from eth_abi import encode
from eth_typing import HexAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

from multichain_deploy.adapter.chain import Revert, SimulatedChain, SimulatedContract, SimulatedTransaction
from multichain_deploy.adapter.contract import ADAPTER_CONSTRUCTOR_TYPES, CrosschainDeployAdapter
from multichain_deploy.adapter.fortify import CREATE3_PROXY_INITCODE_HASH, compute_create2_address, compute_create_address, guard_salt, to_bytes32
from multichain_deploy.adapter.payload import decode_deposit_data, encode_execute_call
from multichain_deploy.sygma.domains import Domain, DomainRegistry

logger = logging.getLogger(__name__)


#: CreateX factory address, the same on every chain
CREATEX_ADDRESS = to_checksum_address("0xba5Ed099633D3B313e4D5F7bdc1305d3c28ba5Ed")

#: Where :py:class:`MockBridge` is installed
BRIDGE_ADDRESS = to_checksum_address("0x4D878E8Fb90178588Cda4cf1DCcdC9a6d2757089")

#: Where :py:class:`MockFeeHandler` is installed
FEE_HANDLER_ADDRESS = to_checksum_address("0xe495c86962DcA7208ECcF2020A273395AcECc956")

#: Anvil account #0, used to deploy the adapter
DEFAULT_DEPLOYER = to_checksum_address("0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266")

#: Anvil account #9, plays the relayer
DEFAULT_RELAYER = to_checksum_address("0xa0Ee7A142d267C1f36714E4a8F75612F20a79720")

#: Resource id of the permissionless generic handler
DEFAULT_RESOURCE_ID = HexBytes("0x0000000000000000000000000000000000000000000000000000000000000500")

#: Fee handler flat fee, 0.01 ETH
DEFAULT_FLAT_FEE = 10**16

#: Simulated creation code of the deploy adapter.
#:
#: Deploying this, followed by ABI encoded ``(factory, bridge, resourceID)``,
#: through the factory creates a :py:class:`CrosschainDeployAdapter`.
ADAPTER_CODE = HexBytes(Web3.keccak(text="CrosschainDeployAdapter"))


class FailedContractCreation(Revert):
    """The factory could not create the contract, e.g. the address is occupied."""


class FailedContractInitialisation(Revert):
    """The init call on the freshly created contract reverted."""


class CreateXFactory(SimulatedContract):
    """CREATE3 half of the CreateX factory.

    Only permissioned salts, prefixed with the calling address, are supported.
    """

    def deploy_create3(self, caller: HexAddress | str, salt: bytes | str, init_code: bytes) -> HexAddress:
        """Deploy with CREATE3.

        :raise FailedContractCreation:
            Address taken or empty init code.
        """
        guarded_salt = guard_salt(caller, salt, self.chain.chain_id)
        proxy = compute_create2_address(self.address, guarded_salt, CREATE3_PROXY_INITCODE_HASH)
        if self.chain.has_code(proxy):
            raise FailedContractCreation(f"CREATE3 proxy {proxy} already exists on chain {self.chain.chain_id}")

        self.chain.install(SimulatedContract(self.chain, proxy))
        self.emit("Create3ProxyContractCreation", newContract=proxy, salt=guarded_salt)

        new_contract = compute_create_address(proxy, 1)
        if self.chain.has_code(new_contract) or self.chain.create_contract(new_contract, init_code) is None:
            raise FailedContractCreation(f"Could not create contract at {new_contract} on chain {self.chain.chain_id}")

        self.emit("ContractCreation", newContract=new_contract)
        return new_contract

    def deploy_create3_and_init(self, caller: HexAddress | str, salt: bytes | str, init_code: bytes, data: bytes) -> HexAddress:
        """Deploy with CREATE3 and call the new contract.

        :raise FailedContractInitialisation:
            The init call reverted.
        """
        new_contract = self.deploy_create3(caller, salt, init_code)
        try:
            self.chain.get_contract(new_contract).call(self.address, data)
        except Revert as e:
            raise FailedContractInitialisation(f"Init call to {new_contract} failed: {e}") from e
        return new_contract


class MockFeeHandler(SimulatedContract):
    """Fee handler quoting ``flat_fee // destination_domain_id``.

    The quote varies by destination so tests can tell fees apart.
    """

    def __init__(self, chain: SimulatedChain, address: HexAddress | str, flat_fee: int):
        super().__init__(chain, address)
        self.flat_fee = flat_fee

    def calculate_fee(
        self,
        sender: HexAddress | str,
        from_domain_id: int,
        destination_domain_id: int,
        resource_id: bytes,
        deposit_data: bytes,
        fee_data: bytes,
    ) -> int:
        assert destination_domain_id > 0, f"Bad domain id {destination_domain_id}"
        return self.flat_fee // destination_domain_id


class MockBridge(SimulatedContract):
    """Bridge with the generic message handler folded in.

    Fees are passed on to the fee handler as is.
    Proposal execution is not deduplicated: the executed
    contract must guard against redelivery itself.
    """

    def __init__(self, chain: SimulatedChain, address: HexAddress | str, domain_id: int, fee_handler: HexAddress | str):
        super().__init__(chain, address)
        self.domain_id = domain_id
        self.fee_handler = to_checksum_address(fee_handler)

    def get_fee_handler(self) -> MockFeeHandler:
        return self.chain.get_contract(self.fee_handler)

    def deposit(
        self,
        sender: HexAddress | str,
        value: int,
        destination_domain_id: int,
        resource_id: bytes,
        deposit_data: bytes,
        fee_data: bytes,
    ) -> int:
        """Accept a generic message deposit.

        :return:
            Deposit nonce for the destination domain
        """
        sender = to_checksum_address(sender)
        self.chain.transfer(sender, self.fee_handler, value)

        nonces = self.storage.setdefault("deposit_counts", {})
        nonce = nonces.get(destination_domain_id, 0) + 1
        nonces[destination_domain_id] = nonce

        self.emit(
            "Deposit",
            destinationDomainID=destination_domain_id,
            resourceID=to_bytes32(resource_id),
            depositNonce=nonce,
            user=sender,
            data=bytes(deposit_data),
            handlerResponse=b"",
            fee=value,
        )
        return nonce

    def execute_proposal(
        self,
        relayer: HexAddress | str,
        origin_domain_id: int,
        deposit_nonce: int,
        resource_id: bytes,
        data: bytes,
    ) -> SimulatedTransaction:
        """Execute a deposit relayed from another domain.

        Calls the execute contract named in the payload with ``selector ‖ depositor ‖ execution data``.
        """
        with self.chain.transaction(relayer) as tx:
            deposit = decode_deposit_data(data)
            target = self.chain.get_contract(deposit.execute_contract)
            target.call(self.address, encode_execute_call(deposit))
            self.emit(
                "ProposalExecution",
                originDomainID=origin_domain_id,
                depositNonce=deposit_nonce,
                dataHash=bytes(Web3.keccak(bytes(data))),
            )
        return tx


@dataclass(slots=True, frozen=True)
class RelayResult:
    """Outcome of relaying one deposit."""

    #: Domain the deposit was made on
    from_domain_id: int

    #: Domain the deposit was executed on
    to_domain_id: int

    #: Bridge deposit nonce
    deposit_nonce: int

    #: Deposit transaction hash on the origin chain
    deposit_tx_hash: HexBytes

    #: ``executed`` or ``failed``
    status: str

    #: Execution transaction hash, ``None`` when failed
    execution_tx_hash: HexBytes | None = None

    #: Revert reason when failed
    error: str | None = None


class SimulatedNetwork:
    """A group of simulated chains joined by the mock bridge.

    Every chain gets the factory, the fee handler and the bridge at the same
    addresses. The adapter is deployed through the factory with a permissioned,
    non-unique salt, so it too lands at the same address everywhere.
    """

    def __init__(
        self,
        domains: dict[int, int],
        flat_fee: int = DEFAULT_FLAT_FEE,
        resource_id: bytes | str = DEFAULT_RESOURCE_ID,
        deployer: HexAddress | str = DEFAULT_DEPLOYER,
    ):
        """
        :param domains:
            Bridge domain id → chain id
        """
        assert domains, "No domains given"
        self.resource_id = to_bytes32(resource_id)
        self.chains: dict[int, SimulatedChain] = {}
        self._relayed: set[tuple[int, int, int]] = set()
        self.relay_results: list[RelayResult] = []

        deployer = to_checksum_address(deployer)
        adapter_salt = bytes.fromhex(deployer[2:]) + bytes(12)
        adapter_init_code = bytes(ADAPTER_CODE) + encode(ADAPTER_CONSTRUCTOR_TYPES, [CREATEX_ADDRESS, BRIDGE_ADDRESS, self.resource_id])

        adapter_addresses = set()
        for domain_id, chain_id in domains.items():
            chain = SimulatedChain(chain_id)
            chain.register_code(ADAPTER_CODE, CrosschainDeployAdapter.construct)
            factory = chain.install(CreateXFactory(chain, CREATEX_ADDRESS))
            chain.install(MockFeeHandler(chain, FEE_HANDLER_ADDRESS, flat_fee))
            chain.install(MockBridge(chain, BRIDGE_ADDRESS, domain_id, FEE_HANDLER_ADDRESS))
            with chain.transaction(deployer):
                adapter_addresses.add(factory.deploy_create3(deployer, adapter_salt, adapter_init_code))
            self.chains[domain_id] = chain

        assert len(adapter_addresses) == 1, f"Adapter addresses diverged: {adapter_addresses}"
        self.adapter_address: HexAddress = adapter_addresses.pop()
        logger.info("Simulated network with domains %s, adapter at %s", list(domains), self.adapter_address)

    def get_chain(self, domain_id: int) -> SimulatedChain:
        return self.chains[domain_id]

    def get_adapter(self, domain_id: int) -> CrosschainDeployAdapter:
        return self.chains[domain_id].get_contract(self.adapter_address)

    def get_bridge(self, domain_id: int) -> MockBridge:
        return self.chains[domain_id].get_contract(BRIDGE_ADDRESS)

    def get_domains(self, names: dict[int, str] | None = None) -> DomainRegistry:
        """Domain registry of the simulated chains.

        :param names:
            Domain id → name. Unnamed domains are called ``domain-{id}``.
        """
        names = names or {}
        return DomainRegistry(Domain(id=domain_id, chain_id=chain.chain_id, name=names.get(domain_id, f"domain-{domain_id}")) for domain_id, chain in self.chains.items())

    def fund(self, domain_id: int, address: HexAddress | str, amount: int):
        self.chains[domain_id].fund(address, amount)

    def relay_deposits(self, relayer: HexAddress | str = DEFAULT_RELAYER) -> list[RelayResult]:
        """Execute every not yet relayed deposit on its destination chain.

        A reverting execution is recorded as ``failed`` and does not stop
        relaying the other deposits.

        :return:
            Results of this round, in deposit order
        """
        results = []
        for from_domain_id, chain in self.chains.items():
            for tx, log in chain.get_logs("Deposit", BRIDGE_ADDRESS):
                to_domain_id = log.args["destinationDomainID"]
                nonce = log.args["depositNonce"]
                key = (from_domain_id, to_domain_id, nonce)
                if key in self._relayed:
                    continue
                self._relayed.add(key)

                destination_bridge = self.get_bridge(to_domain_id)
                try:
                    execution = destination_bridge.execute_proposal(relayer, from_domain_id, nonce, log.args["resourceID"], log.args["data"])
                    result = RelayResult(from_domain_id, to_domain_id, nonce, tx.hash, "executed", execution_tx_hash=execution.hash)
                except Revert as e:
                    logger.warning("Relaying deposit %d from domain %d to %d failed: %s", nonce, from_domain_id, to_domain_id, e)
                    result = RelayResult(from_domain_id, to_domain_id, nonce, tx.hash, "failed", error=str(e))
                results.append(result)

        self.relay_results.extend(results)
        return results

    def get_transfers(self, tx_hash: HexBytes | str) -> list[dict]:
        """Transfers of a deposit transaction in the bridge indexer format.

        Deposits not yet relayed are ``pending``.
        """
        tx_hash = HexBytes(tx_hash)
        transfers = []
        for from_domain_id, chain in self.chains.items():
            tx = chain.transactions.get(tx_hash)
            if tx is None:
                continue
            for log in tx.get_events("Deposit", BRIDGE_ADDRESS):
                to_domain_id = log.args["destinationDomainID"]
                nonce = log.args["depositNonce"]
                status = "pending"
                for result in self.relay_results:
                    if (result.from_domain_id, result.to_domain_id, result.deposit_nonce) == (from_domain_id, to_domain_id, nonce):
                        status = result.status
                transfers.append(
                    {
                        "id": f"{from_domain_id}-{to_domain_id}-{nonce}",
                        "depositNonce": nonce,
                        "fromDomainId": from_domain_id,
                        "toDomainId": to_domain_id,
                        "status": status,
                        "deposit": {"txHash": "0x" + bytes(tx_hash).hex()},
                    }
                )
        return transfers
