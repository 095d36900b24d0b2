"""Cross-chain deploy adapter.

Python model of the ``CrosschainDeployAdapter`` contract. The adapter is deployed
at an identical address on every chain. A single funded ``deploy()`` call on the
origin chain:

- deploys the contract locally, when the origin domain is among the destinations
- deposits a generic message to the bridge for every other destination

The bridge later calls ``execute()`` on the adapter of each destination chain,
which deploys the contract there with the same fortified salt,
and thus to the same (or, for unique per chain salts, predictable) address.

The adapter holds no deployment state, only its immutable configuration:
``FACTORY``, ``BRIDGE``, ``RESOURCE_ID`` and ``DOMAIN_ID``, the last one read from the bridge.

- `Sygma generic message passing <https://docs.buildwithsygma.com/>`__
"""

import logging
from dataclasses import dataclass, field

from eth_abi import decode
from eth_typing import HexAddress
from eth_utils import to_checksum_address

from multichain_deploy.adapter.chain import Revert, SimulatedChain, SimulatedContract, SimulatedTransaction
from multichain_deploy.adapter.fortify import compute_address, fortify, to_bytes32
from multichain_deploy.adapter.payload import EXECUTE_SIGNATURE, encode_deposit_data

logger = logging.getLogger(__name__)


#: ABI types of the adapter constructor: ``(factory, bridge, resourceID)``
ADAPTER_CONSTRUCTOR_TYPES = ["address", "address", "bytes32"]


class AdapterRevert(Revert):
    """Base class for custom errors of the deploy adapter."""


class InvalidLength(AdapterRevert):
    """Parallel deploy arrays do not have equal length."""


class InsufficientFee(AdapterRevert):
    """Attached value is less than the sum of fees."""


class ExcessFee(AdapterRevert):
    """Attached value is more than the sum of fees."""


class InvalidHandler(AdapterRevert):
    """``execute()`` was not called by the bridge."""


class InvalidOrigin(AdapterRevert):
    """``execute()`` message did not originate from the adapter itself."""


@dataclass(slots=True)
class DeployRequest:
    """Everything ``deploy()`` and ``calculateDeployFee()`` take, fees aside.

    :py:attr:`constructor_args`, :py:attr:`init_datas`
    and :py:attr:`destination_domain_ids` are parallel arrays.
    """

    #: Contract creation code without constructor arguments
    init_code: bytes

    #: Gas limit for the execution on destination chains
    gas_limit: int

    #: Caller chosen 32 bytes salt
    salt: bytes

    #: Deploy to a different address on every chain
    is_unique_per_chain: bool

    #: ABI encoded constructor arguments per destination
    constructor_args: list[bytes] = field(default_factory=list)

    #: Init call data per destination, empty for no init call
    init_datas: list[bytes] = field(default_factory=list)

    #: Bridge domain ids of destinations
    destination_domain_ids: list[int] = field(default_factory=list)


class CrosschainDeployAdapter(SimulatedContract):
    """Deploy adapter bound to a :py:class:`~multichain_deploy.adapter.chain.SimulatedChain`.

    Needs a bridge model with ``domain_id`` and ``deposit()``
    and a CREATE3 factory model installed on the same chain.
    """

    FUNCTIONS = {
        EXECUTE_SIGNATURE: "execute",
    }

    def __init__(
        self,
        chain: SimulatedChain,
        address: HexAddress | str,
        factory: HexAddress | str,
        bridge: HexAddress | str,
        resource_id: bytes | str,
    ):
        super().__init__(chain, address)
        self.FACTORY = to_checksum_address(factory)
        self.BRIDGE = to_checksum_address(bridge)
        self.RESOURCE_ID = to_bytes32(resource_id)
        self.DOMAIN_ID = self.chain.get_contract(self.BRIDGE).domain_id

    @classmethod
    def construct(cls, chain: SimulatedChain, address: HexAddress | str, constructor_args: bytes) -> "CrosschainDeployAdapter":
        """Create from ABI encoded constructor arguments.

        Used as a code registry entry, so the factory can deploy adapters.
        """
        factory, bridge, resource_id = decode(ADAPTER_CONSTRUCTOR_TYPES, constructor_args)
        return cls(chain, address, factory, bridge, resource_id)

    def fortify(self, sender: HexAddress | str, salt: bytes | str, is_unique_per_chain: bool) -> bytes:
        return fortify(self.address, sender, salt, is_unique_per_chain)

    def compute_contract_address(self, sender: HexAddress | str, salt: bytes | str, is_unique_per_chain: bool) -> HexAddress:
        """Address a deploy from ``sender`` lands at on this chain."""
        return self.compute_contract_address_for_chain(sender, salt, is_unique_per_chain, self.chain.chain_id)

    def compute_contract_address_for_chain(
        self,
        sender: HexAddress | str,
        salt: bytes | str,
        is_unique_per_chain: bool,
        chain_id: int,
    ) -> HexAddress:
        """Address a deploy from ``sender`` lands at on any chain."""
        return compute_address(self.FACTORY, self.fortify(sender, salt, is_unique_per_chain), chain_id)

    def prepare_deposit_data(self, gas_limit: int, init_code: bytes, init_data: bytes, fortified_salt: bytes | str) -> bytes:
        return encode_deposit_data(gas_limit, self.address, init_code, init_data, fortified_salt)

    def slice(self, data: bytes, position: int) -> bytes:
        return bytes(data)[position:]

    def calculate_deploy_fee(self, sender: HexAddress | str, request: DeployRequest) -> list[int]:
        """Quote the fee of every destination.

        Read only. The local domain always costs zero, remote domains are
        quoted by the bridge fee handler for the exact payload ``deploy()`` would send.

        :raise InvalidLength:
            If the three parallel arrays differ in length.
        """
        count = len(request.destination_domain_ids)
        if len(request.constructor_args) != count or len(request.init_datas) != count:
            raise InvalidLength(f"constructor_args {len(request.constructor_args)}, init_datas {len(request.init_datas)}, destinations {count}")

        fortified_salt = self.fortify(sender, request.salt, request.is_unique_per_chain)
        bridge = self.chain.get_contract(self.BRIDGE)
        fee_handler = bridge.get_fee_handler()

        fees = []
        for idx, domain_id in enumerate(request.destination_domain_ids):
            if domain_id == self.DOMAIN_ID:
                fees.append(0)
                continue

            deposit_data = self.prepare_deposit_data(
                request.gas_limit,
                bytes(request.init_code) + bytes(request.constructor_args[idx]),
                request.init_datas[idx],
                fortified_salt,
            )
            fee = fee_handler.calculate_fee(self.address, self.DOMAIN_ID, domain_id, self.RESOURCE_ID, deposit_data, b"")
            fees.append(fee)

        return fees

    def deploy(
        self,
        sender: HexAddress | str,
        value: int,
        request: DeployRequest,
        fees: list[int],
    ) -> SimulatedTransaction:
        """Deploy locally and request deployments on other chains.

        Destinations are processed in the given order. The whole call
        reverts if any of the destinations fails.

        :param sender:
            Transaction sender. Part of the fortified salt.

        :param value:
            Native token attached to the transaction. Must equal ``sum(fees)``.

        :param fees:
            Bridge fee per destination, as quoted by :py:meth:`calculate_deploy_fee`.

        :raise InvalidLength:
            If the four parallel arrays differ in length.

        :raise InsufficientFee:
            If ``value`` is below the fee sum.

        :raise ExcessFee:
            If ``value`` is above the fee sum.
        """
        sender = to_checksum_address(sender)
        with self.chain.transaction(sender) as tx:
            count = len(request.destination_domain_ids)
            lengths = [len(request.constructor_args), len(request.init_datas), count, len(fees)]
            if any(length != count for length in lengths):
                raise InvalidLength(f"constructor_args {lengths[0]}, init_datas {lengths[1]}, destinations {lengths[2]}, fees {lengths[3]}")

            total_fee = sum(fees)
            if value < total_fee:
                raise InsufficientFee(f"Got {value}, needs {total_fee}")
            if value > total_fee:
                raise ExcessFee(f"Got {value}, needs {total_fee}")

            self.chain.transfer(sender, self.address, value)

            fortified_salt = self.fortify(sender, request.salt, request.is_unique_per_chain)
            bridge = self.chain.get_contract(self.BRIDGE)

            for idx, domain_id in enumerate(request.destination_domain_ids):
                init_code = bytes(request.init_code) + bytes(request.constructor_args[idx])
                init_data = bytes(request.init_datas[idx])
                if domain_id == self.DOMAIN_ID:
                    self._deploy(init_code, init_data, fortified_salt)
                else:
                    deposit_data = self.prepare_deposit_data(request.gas_limit, init_code, init_data, fortified_salt)
                    bridge.deposit(self.address, fees[idx], domain_id, self.RESOURCE_ID, deposit_data, b"")
                    self.emit("DeployRequested", sender=sender, fortifiedSalt=fortified_salt, destinationDomainID=domain_id)

        logger.debug("Adapter %s deploy tx %s, destinations %s", self.address, tx.hash.hex(), request.destination_domain_ids)
        return tx

    def execute(
        self,
        caller: HexAddress | str,
        origin_depositor: HexAddress | str,
        init_code: bytes,
        init_data: bytes,
        fortified_salt: bytes | str,
    ) -> SimulatedTransaction:
        """Bridge callback on the destination chain.

        :param caller:
            Message sender. Must be the bridge.

        :param origin_depositor:
            Depositor on the origin chain. Must be the adapter itself.

        :raise InvalidHandler:
            Not called by the bridge.

        :raise InvalidOrigin:
            The message was not deposited by an adapter at this address.
        """
        with self.chain.transaction(caller) as tx:
            if to_checksum_address(caller) != self.BRIDGE:
                raise InvalidHandler(f"Caller {caller} is not the bridge {self.BRIDGE}")
            if to_checksum_address(origin_depositor) != self.address:
                raise InvalidOrigin(f"Origin {origin_depositor} is not the adapter {self.address}")
            self._deploy(bytes(init_code), bytes(init_data), to_bytes32(fortified_salt))
        return tx

    def _deploy(self, init_code: bytes, init_data: bytes, fortified_salt: bytes) -> HexAddress:
        factory = self.chain.get_contract(self.FACTORY)
        if init_data:
            new_contract = factory.deploy_create3_and_init(self.address, fortified_salt, init_code, init_data)
        else:
            new_contract = factory.deploy_create3(self.address, fortified_salt, init_code)
        self.emit("Deployed", fortifiedSalt=fortified_salt, newContract=new_contract)
        return new_contract
