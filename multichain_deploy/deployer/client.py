"""Deploy adapter call surface on the origin chain.

The orchestrator talks to the adapter only through :py:class:`DeployAdapterClient`:

- :py:class:`Web3DeployAdapter`: the deployed contract over JSON-RPC
- :py:class:`SimulatedDeployAdapter`: the Python adapter model on a
  :py:class:`~multichain_deploy.adapter.simulation.SimulatedNetwork`, for tests and dry runs
"""

import logging

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction

from multichain_deploy.abi import get_deployed_contract
from multichain_deploy.adapter.contract import DeployRequest
from multichain_deploy.adapter.fortify import to_bytes32
from multichain_deploy.adapter.simulation import SimulatedNetwork

logger = logging.getLogger(__name__)

#: Bundled ABI of the adapter
ADAPTER_ABI_FILE = "CrosschainDeployAdapter.json"

#: Fixed part of the contract creation gas cost in the simulation
SIMULATED_CREATE_BASE_GAS = 53_000

#: Per byte contract creation gas cost in the simulation
SIMULATED_CREATE_BYTE_GAS = 200


class DeployTransactionFailed(Exception):
    """The deploy transaction was mined but reverted."""


class DeployAdapterClient:
    """Adapter operations the orchestrator needs.

    All calls are made as :py:meth:`get_sender`, as the sender is part of the fortified salt.
    """

    def get_chain_id(self) -> int:
        """Chain id of the origin chain."""
        raise NotImplementedError()

    def get_sender(self) -> HexAddress:
        """Account sending the deploy transaction."""
        raise NotImplementedError()

    def factory(self) -> HexAddress:
        raise NotImplementedError()

    def domain_id(self) -> int:
        """Bridge domain id of the origin chain, as the adapter sees it."""
        raise NotImplementedError()

    def fortify(self, salt: bytes, is_unique_per_chain: bool) -> bytes:
        raise NotImplementedError()

    def compute_contract_address(self, salt: bytes, is_unique_per_chain: bool, chain_id: int | None = None) -> HexAddress:
        """Predict where the contract lands.

        :param chain_id:
            Destination chain id. Origin chain if not given.
        """
        raise NotImplementedError()

    def calculate_deploy_fee(self, request: DeployRequest) -> list[int]:
        raise NotImplementedError()

    def estimate_deploy_gas(self, init_code: bytes) -> int:
        """Gas to create a contract from the init code, constructor arguments included."""
        raise NotImplementedError()

    def deploy(self, request: DeployRequest, fees: list[int], value: int, tx_options: dict | None = None) -> HexBytes:
        """Send the funded deploy transaction and wait until it is mined.

        :return:
            Transaction hash

        :raise DeployTransactionFailed:
            The transaction reverted.
        """
        raise NotImplementedError()


class Web3DeployAdapter(DeployAdapterClient):
    """Deployed adapter contract over web3.py.

    Transactions are signed with a local private key when ``account`` is given,
    otherwise sent with ``eth_sendTransaction`` from an unlocked account, e.g. on Anvil.
    """

    def __init__(
        self,
        web3: Web3,
        adapter_address: HexAddress | str,
        account: LocalAccount | None = None,
        sender: HexAddress | str | None = None,
    ):
        assert account is not None or sender is not None, "Give either account or sender"
        self.web3 = web3
        self.account = account
        self.sender = to_checksum_address(account.address if account is not None else sender)
        self.contract = get_deployed_contract(web3, ADAPTER_ABI_FILE, adapter_address)

    def __repr__(self):
        return f"<Web3DeployAdapter {self.contract.address} sender {self.sender}>"

    def get_chain_id(self) -> int:
        return self.web3.eth.chain_id

    def get_sender(self) -> HexAddress:
        return self.sender

    def factory(self) -> HexAddress:
        return self.contract.functions.FACTORY().call()

    def domain_id(self) -> int:
        return self.contract.functions.DOMAIN_ID().call()

    def fortify(self, salt: bytes, is_unique_per_chain: bool) -> bytes:
        return bytes(self.contract.functions.fortify(self.sender, to_bytes32(salt), is_unique_per_chain).call())

    def compute_contract_address(self, salt: bytes, is_unique_per_chain: bool, chain_id: int | None = None) -> HexAddress:
        salt = to_bytes32(salt)
        if chain_id is None:
            address = self.contract.functions.computeContractAddress(self.sender, salt, is_unique_per_chain).call()
        else:
            address = self.contract.functions.computeContractAddressForChain(self.sender, salt, is_unique_per_chain, chain_id).call()
        return to_checksum_address(address)

    def calculate_deploy_fee(self, request: DeployRequest) -> list[int]:
        fees = self.contract.functions.calculateDeployFee(
            bytes(request.init_code),
            request.gas_limit,
            to_bytes32(request.salt),
            request.is_unique_per_chain,
            [bytes(a) for a in request.constructor_args],
            [bytes(d) for d in request.init_datas],
            list(request.destination_domain_ids),
        ).call({"from": self.sender})
        return [int(f) for f in fees]

    def estimate_deploy_gas(self, init_code: bytes) -> int:
        return self.web3.eth.estimate_gas({"from": self.sender, "data": HexBytes(init_code)})

    def deploy(self, request: DeployRequest, fees: list[int], value: int, tx_options: dict | None = None) -> HexBytes:
        func = self.contract.functions.deploy(
            bytes(request.init_code),
            request.gas_limit,
            to_bytes32(request.salt),
            request.is_unique_per_chain,
            [bytes(a) for a in request.constructor_args],
            [bytes(d) for d in request.init_datas],
            list(request.destination_domain_ids),
            [int(f) for f in fees],
        )

        tx_params = dict(tx_options or {})
        if "value" in tx_params and tx_params["value"] != value:
            logger.warning("Ignoring value %s in transaction options, the deploy needs exactly %d", tx_params["value"], value)
        tx_params["value"] = value
        tx_params["from"] = self.sender

        tx_hash = self._send(func, tx_params)
        logger.info("Deploy transaction %s sent, waiting for the receipt", tx_hash.hex())

        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise DeployTransactionFailed(f"Deploy transaction {tx_hash.hex()} reverted in block {receipt['blockNumber']}")
        return HexBytes(tx_hash)

    def _send(self, func: ContractFunction, tx_params: dict) -> HexBytes:
        if self.account is None:
            return HexBytes(func.transact(tx_params))

        if "nonce" not in tx_params:
            tx_params["nonce"] = self.web3.eth.get_transaction_count(self.sender)
        tx = func.build_transaction(tx_params)
        signed_tx = self.account.sign_transaction(tx)
        return HexBytes(self.web3.eth.send_raw_transaction(signed_tx.raw_transaction))


class SimulatedDeployAdapter(DeployAdapterClient):
    """Adapter model on one domain of a simulated network."""

    def __init__(self, network: SimulatedNetwork, domain_id: int, sender: HexAddress | str):
        self.network = network
        self.adapter = network.get_adapter(domain_id)
        self.sender = to_checksum_address(sender)

    def __repr__(self):
        return f"<SimulatedDeployAdapter {self.adapter} sender {self.sender}>"

    def get_chain_id(self) -> int:
        return self.adapter.chain.chain_id

    def get_sender(self) -> HexAddress:
        return self.sender

    def factory(self) -> HexAddress:
        return self.adapter.FACTORY

    def domain_id(self) -> int:
        return self.adapter.DOMAIN_ID

    def fortify(self, salt: bytes, is_unique_per_chain: bool) -> bytes:
        return self.adapter.fortify(self.sender, salt, is_unique_per_chain)

    def compute_contract_address(self, salt: bytes, is_unique_per_chain: bool, chain_id: int | None = None) -> HexAddress:
        if chain_id is None:
            return self.adapter.compute_contract_address(self.sender, salt, is_unique_per_chain)
        return self.adapter.compute_contract_address_for_chain(self.sender, salt, is_unique_per_chain, chain_id)

    def calculate_deploy_fee(self, request: DeployRequest) -> list[int]:
        return self.adapter.calculate_deploy_fee(self.sender, request)

    def estimate_deploy_gas(self, init_code: bytes) -> int:
        return SIMULATED_CREATE_BASE_GAS + SIMULATED_CREATE_BYTE_GAS * len(init_code)

    def deploy(self, request: DeployRequest, fees: list[int], value: int, tx_options: dict | None = None) -> HexBytes:
        if tx_options:
            logger.debug("Simulated deploy ignores transaction options %s", tx_options)
        tx = self.adapter.deploy(self.sender, value, request, fees)
        return tx.hash
