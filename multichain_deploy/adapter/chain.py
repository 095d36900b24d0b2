"""In-process simulated EVM ledger.

A minimal ledger model to run the deploy adapter protocol without a node:
balances, contract instances, per-contract storage, event logs and
all-or-nothing transactions.

Transactions are atomic the way an Anvil ``evm_snapshot`` / ``evm_revert`` pair is:
a snapshot of the ledger state is taken when the outermost transaction opens,
and any exception escaping the transaction restores it.

Contracts keep their mutable state in :py:attr:`SimulatedContract.storage`,
which lives on the chain, so that snapshots never need to copy contract objects.

Example::

    chain = SimulatedChain(chain_id=1)
    chain.fund(deployer, 10 * 10**18)

    with chain.transaction(deployer) as tx:
        chain.transfer(deployer, recipient, 10**18)

    assert tx.status == 1
"""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import count
from typing import Callable, Iterator

from eth_abi import decode, encode
from eth_typing import HexAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)


#: Constructs a contract instance from ``(chain, address, constructor_args)``
ContractConstructor = Callable[["SimulatedChain", HexAddress, bytes], "SimulatedContract"]


class Revert(Exception):
    """A simulated call reverted.

    All state changes of the enclosing transaction are rolled back.
    """


class InsufficientFunds(Revert):
    """Sender balance does not cover the transferred value."""


class UnknownFunction(Revert):
    """Called contract has no function for the call data selector."""


class NoContract(Revert):
    """There is no contract at the called address."""


@dataclass(slots=True, frozen=True)
class SimulatedLog:
    """One emitted event."""

    #: Contract that emitted the event
    address: HexAddress

    #: Event name, e.g. ``Deployed``
    event: str

    #: Event arguments by their Solidity name
    args: dict

    #: Position of the log within its transaction
    log_index: int


@dataclass(slots=True)
class SimulatedTransaction:
    """Receipt-like record of a simulated transaction."""

    #: Transaction hash
    hash: HexBytes

    #: Account that sent the transaction
    sender: HexAddress

    #: Block the transaction was included in
    block_number: int

    #: Emitted events in emission order
    logs: list[SimulatedLog] = field(default_factory=list)

    #: 1 when committed, 0 when reverted, ``None`` while running
    status: int | None = None

    def get_events(self, event: str | None = None, address: HexAddress | str | None = None) -> list[SimulatedLog]:
        """Filter the logs of this transaction by event name and emitter."""
        if address is not None:
            address = to_checksum_address(address)
        return [log for log in self.logs if (event is None or log.event == event) and (address is None or log.address == address)]


def get_function_selector(signature: str) -> bytes:
    """4 byte selector of a Solidity function signature."""
    return bytes(Web3.keccak(text=signature)[0:4])


def get_signature_arg_types(signature: str) -> list[str]:
    """Argument types of a flat Solidity function signature like ``initialize(uint256)``."""
    args = signature[signature.index("(") + 1 : -1]
    return [a for a in args.split(",") if a]


class SimulatedContract:
    """Base class for Python contract models living on a :py:class:`SimulatedChain`.

    Subclasses list raw call data entry points in :py:attr:`FUNCTIONS`.
    Entry point methods are called as ``method(sender, *decoded_args)``.
    """

    #: Solidity function signature → Python method name
    FUNCTIONS: dict[str, str] = {}

    def __init__(self, chain: "SimulatedChain", address: HexAddress | str):
        self.chain = chain
        self.address = to_checksum_address(address)

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.address} on chain {self.chain.chain_id}>"

    @property
    def storage(self) -> dict:
        """Mutable contract state, rolled back with the transaction."""
        return self.chain.storage.setdefault(self.address, {})

    def emit(self, event: str, **args):
        self.chain.emit(self.address, event, args)

    def call(self, sender: HexAddress | str, data: bytes, value: int = 0) -> bytes | None:
        """Execute raw call data against this contract.

        :raise UnknownFunction:
            No entry point matches the selector.
        """
        data = bytes(data)
        for signature, method_name in self.FUNCTIONS.items():
            if data[0:4] == get_function_selector(signature):
                args = decode(get_signature_arg_types(signature), data[4:])
                with self.chain.transaction(sender):
                    self.chain.transfer(sender, self.address, value)
                    return getattr(self, method_name)(to_checksum_address(sender), *args)
        raise UnknownFunction(f"{self}: no function for selector 0x{data[0:4].hex()}")


class OpaqueContract(SimulatedContract):
    """Contract with code unknown to the simulator.

    Accepts and records every call. Used for init code that has
    no registered Python model.
    """

    def __init__(self, chain: "SimulatedChain", address: HexAddress | str, init_code: bytes = b""):
        super().__init__(chain, address)
        #: Init code the contract was created from, constructor arguments included
        self.init_code = bytes(init_code)

    def call(self, sender: HexAddress | str, data: bytes, value: int = 0) -> bytes | None:
        with self.chain.transaction(sender):
            self.chain.transfer(sender, self.address, value)
            self.storage.setdefault("calls", []).append((to_checksum_address(sender), bytes(data), value))
        return b""


class SimulatedChain:
    """One simulated EVM chain.

    :py:attr:`chain_id` is fixed at construction. Everything else is ledger state.
    """

    def __init__(self, chain_id: int):
        assert chain_id > 0, f"Bad chain id {chain_id}"
        self.chain_id = chain_id
        self.block_number = 0

        #: Native token balances
        self.balances: dict[HexAddress, int] = {}

        #: Per contract mutable state
        self.storage: dict[HexAddress, dict] = {}

        #: Address → contract model
        self.contracts: dict[HexAddress, SimulatedContract] = {}

        #: Committed transactions by hash
        self.transactions: dict[HexBytes, SimulatedTransaction] = {}

        self._code_registry: dict[bytes, ContractConstructor] = {}
        self._current: SimulatedTransaction | None = None
        self._tx_counter = count(1)

    def __repr__(self):
        return f"<SimulatedChain {self.chain_id} at block {self.block_number}>"

    def fund(self, address: HexAddress | str, amount: int):
        """Set up native token balance, like ``anvil_setBalance``."""
        address = to_checksum_address(address)
        self.balances[address] = self.balances.get(address, 0) + amount

    def get_balance(self, address: HexAddress | str) -> int:
        return self.balances.get(to_checksum_address(address), 0)

    def install(self, contract: SimulatedContract) -> SimulatedContract:
        """Put a contract model at its address, like ``anvil_setCode``."""
        assert contract.chain is self, f"{contract} belongs to another chain"
        self.contracts[contract.address] = contract
        return contract

    def has_code(self, address: HexAddress | str) -> bool:
        return to_checksum_address(address) in self.contracts

    def get_contract(self, address: HexAddress | str) -> SimulatedContract:
        """Look up a contract model.

        :raise NoContract:
            Nothing deployed at the address.
        """
        address = to_checksum_address(address)
        try:
            return self.contracts[address]
        except KeyError:
            raise NoContract(f"No contract at {address} on chain {self.chain_id}")

    def register_code(self, code: bytes, constructor: ContractConstructor):
        """Teach the chain what contract model a piece of init code creates.

        When contract creation init code starts with ``code``,
        the rest of the init code is treated as ABI encoded constructor arguments.
        """
        assert code, "Cannot register empty code"
        self._code_registry[bytes(code)] = constructor

    def create_contract(self, address: HexAddress | str, init_code: bytes) -> SimulatedContract | None:
        """Create a contract from init code.

        :return:
            The installed contract, or ``None`` when the init code is empty
            and no code would be deployed.
        """
        init_code = bytes(init_code)
        if not init_code:
            return None

        # Longest registered prefix wins
        for code in sorted(self._code_registry, key=len, reverse=True):
            if init_code.startswith(code):
                contract = self._code_registry[code](self, address, init_code[len(code) :])
                break
        else:
            contract = OpaqueContract(self, address, init_code)

        return self.install(contract)

    @property
    def current_transaction(self) -> SimulatedTransaction:
        assert self._current is not None, "No transaction running"
        return self._current

    def emit(self, address: HexAddress | str, event: str, args: dict):
        tx = self.current_transaction
        tx.logs.append(SimulatedLog(address=to_checksum_address(address), event=event, args=args, log_index=len(tx.logs)))

    def transfer(self, sender: HexAddress | str, recipient: HexAddress | str, value: int):
        """Move native token between two accounts.

        :raise InsufficientFunds:
            If the sender cannot cover the value.
        """
        assert value >= 0, f"Negative value {value}"
        if value == 0:
            return
        sender = to_checksum_address(sender)
        recipient = to_checksum_address(recipient)
        balance = self.balances.get(sender, 0)
        if balance < value:
            raise InsufficientFunds(f"{sender} has {balance}, needs {value} on chain {self.chain_id}")
        self.balances[sender] = balance - value
        self.balances[recipient] = self.balances.get(recipient, 0) + value

    @contextmanager
    def transaction(self, sender: HexAddress | str) -> Iterator[SimulatedTransaction]:
        """Run a block of calls as one atomic transaction.

        Nested use joins the already running transaction.
        """
        if self._current is not None:
            yield self._current
            return

        sender = to_checksum_address(sender)
        tx_hash = HexBytes(Web3.keccak(encode(["uint256", "address", "uint256"], [self.chain_id, sender, next(self._tx_counter)])))
        tx = SimulatedTransaction(hash=tx_hash, sender=sender, block_number=self.block_number + 1)

        snapshot = self._snapshot()
        self._current = tx
        try:
            yield tx
        except Exception as e:
            self._restore(snapshot)
            tx.status = 0
            tx.logs = []
            logger.debug("Transaction %s on chain %d reverted: %s", tx_hash.hex(), self.chain_id, e)
            raise
        else:
            tx.status = 1
            self.block_number = tx.block_number
            self.transactions[tx_hash] = tx
        finally:
            self._current = None

    def get_logs(self, event: str | None = None, address: HexAddress | str | None = None) -> list[tuple[SimulatedTransaction, SimulatedLog]]:
        """All committed logs in chain order."""
        result = []
        for tx in self.transactions.values():
            for log in tx.get_events(event, address):
                result.append((tx, log))
        return result

    def _snapshot(self) -> tuple:
        return dict(self.balances), copy.deepcopy(self.storage), dict(self.contracts)

    def _restore(self, snapshot: tuple):
        self.balances, self.storage, self.contracts = snapshot
