"""ABI loading and typed ABI schema.

- Loading the bundled adapter ABI and compiler artifacts of the contracts to deploy
- Parsing a contract ABI into a typed schema, so constructor arguments
  and init calls are validated against their declared types before anything is encoded

Example:

.. code-block:: python

    interface = parse_contract_abi(artifact["abi"])

    constructor_args = encode_constructor_args(interface, ["0x6B175474E89094C44Da98b954EedeAC495271d0F", 100])
    init_data = encode_init_data(interface, "setName", ["Pepe"])
"""

import enum
import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence, Type

from eth_abi import decode, encode
from eth_typing import HexAddress
from eth_utils import is_address, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import Contract

logger = logging.getLogger(__name__)

# How big are our ABI and contract caches
_CACHE_SIZE = 64

#: Matches ``uint256``, ``int8``, ``bytes32`` etc.
_SIZED_TYPE_RE = re.compile(r"^(uint|int|bytes)(\d*)$")

#: Matches a trailing array dimension: ``[]`` or ``[3]``
_ARRAY_SUFFIX_RE = re.compile(r"^(.*)\[(\d*)\]$")


class ArgumentTypeError(Exception):
    """A value does not match its declared ABI type."""


class ConstructorArgumentMismatch(Exception):
    """Constructor arguments do not match the constructor inputs of the ABI."""


class InitMethodNotFound(Exception):
    """The init method is not in the contract ABI."""


class ArtifactNotFound(Exception):
    """Compiler artifact for the contract could not be located."""


class AbiKind(enum.Enum):
    """Kind of an ABI parameter type."""

    uint = "uint"
    int = "int"
    address = "address"
    bool = "bool"
    bytes = "bytes"
    fixed_bytes = "fixed_bytes"
    string = "string"
    array = "array"
    tuple = "tuple"


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> dict:
    """Reads an embedded ABI file and returns it.

    Example::

        abi = get_abi_by_filename("CrosschainDeployAdapter.json")

    Any results are cached.

    :param fname:
        JSON filename in the ``abi`` folder of this package
    """
    here = Path(__file__).resolve().parent
    abi_path = here / "abi" / Path(fname)
    with open(abi_path, "rt", encoding="utf-8") as f:
        abi = json.load(f)
    return abi


@lru_cache(maxsize=_CACHE_SIZE)
def get_contract(web3: Web3, fname: str) -> Type[Contract]:
    """Get Contract proxy class from a bundled ABI JSON file.

    Any results are cached. Web3 connection is part of the cache key.
    """
    contract_interface = get_abi_by_filename(fname)
    return web3.eth.contract(abi=contract_interface["abi"])


def get_deployed_contract(web3: Web3, fname: str, address: HexAddress | str) -> Contract:
    """Get a Contract proxy object for a contract deployed at a specific address."""
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, "get_deployed_contract() address was None"
    return get_contract(web3, fname)(Web3.to_checksum_address(address))


def read_artifact(artifacts_path: Path, contract_name: str) -> dict:
    """Read a Hardhat or Foundry compiler artifact by contract name.

    Looks for ``{contract_name}.json`` anywhere under ``artifacts_path``,
    e.g. ``artifacts/contracts/Greeter.sol/Greeter.json`` (Hardhat)
    or ``out/Greeter.sol/Greeter.json`` (Foundry).

    :return:
        Dict with at least ``abi`` and ``bytecode`` keys.
        ``bytecode`` is always a hex string.

    :raise ArtifactNotFound:
        No artifact, or more than one artifact with the name.
    """
    artifacts_path = Path(artifacts_path)
    candidates = sorted(p for p in artifacts_path.rglob(f"{contract_name}.json") if not p.name.endswith(".dbg.json"))

    if not candidates:
        raise ArtifactNotFound(f"No artifact for {contract_name} under {artifacts_path}")

    if len(candidates) > 1:
        raise ArtifactNotFound(f"Several artifacts for {contract_name}, use a fully qualified path: {candidates}")

    with open(candidates[0], "rt", encoding="utf-8") as f:
        artifact = json.load(f)

    bytecode = artifact.get("bytecode")
    if type(bytecode) == dict:
        # Forge: contains keys object, sourceMap, linkReferences
        bytecode = bytecode["object"]

    if not bytecode or bytecode == "0x":
        raise ArtifactNotFound(f"Artifact {candidates[0]} has no bytecode, is {contract_name} abstract or an interface?")

    logger.debug("Loaded artifact %s from %s", contract_name, candidates[0])
    return {**artifact, "bytecode": bytecode}


def _canonical_type(data: dict) -> str:
    """Flatten ``tuple`` types to ``(t1,t2)`` so eth_abi can consume them."""
    abi_type = data["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in data.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def _to_bytes(value: Any, what: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes(HexBytes(value))
        except ValueError as e:
            raise ArgumentTypeError(f"{what}: {value!r} is not valid hex") from e
    raise ArgumentTypeError(f"{what}: expected bytes or 0x hex string, got {value!r}")


def _to_int(value: Any, what: str) -> int:
    # bool is an int subclass, but never a valid integer argument
    if isinstance(value, bool):
        raise ArgumentTypeError(f"{what}: expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as e:
            raise ArgumentTypeError(f"{what}: {value!r} is not an integer") from e
    raise ArgumentTypeError(f"{what}: expected an integer, got {value!r}")


@dataclass(slots=True, frozen=True)
class AbiParameter:
    """One typed input of a function, constructor or tuple."""

    #: Parameter name, may be empty
    name: str

    #: Canonical type, tuples expanded, e.g. ``uint256`` or ``(address,uint256)[]``
    type: str

    #: What kind of value the type takes
    kind: AbiKind

    #: Tuple members, for tuples and arrays of tuples
    components: tuple["AbiParameter", ...] = field(default_factory=tuple)

    @staticmethod
    def from_json(data: dict) -> "AbiParameter":
        components = tuple(AbiParameter.from_json(c) for c in data.get("components", []))
        abi_type = _canonical_type(data)
        return AbiParameter(
            name=data.get("name", ""),
            type=abi_type,
            kind=AbiParameter.get_kind(abi_type),
            components=components,
        )

    @staticmethod
    def get_kind(abi_type: str) -> AbiKind:
        if _ARRAY_SUFFIX_RE.match(abi_type):
            return AbiKind.array
        if abi_type.startswith("("):
            return AbiKind.tuple
        if abi_type in ("address", "bool", "string", "bytes"):
            return AbiKind(abi_type)
        m = _SIZED_TYPE_RE.match(abi_type)
        if m:
            base, size = m.groups()
            if base == "bytes":
                return AbiKind.fixed_bytes
            return AbiKind(base)
        raise ArgumentTypeError(f"Unsupported ABI type {abi_type}")

    def get_element(self) -> "AbiParameter":
        """Element parameter of an array type."""
        assert self.kind == AbiKind.array, f"{self.type} is not an array"
        element_type = _ARRAY_SUFFIX_RE.match(self.type).group(1)
        return AbiParameter(name=self.name, type=element_type, kind=AbiParameter.get_kind(element_type), components=self.components)

    def _get_bits(self) -> int:
        size = _SIZED_TYPE_RE.match(self.type).group(2)
        return int(size) if size else 256

    def validate(self, value: Any) -> Any:
        """Check the value against the declared type.

        :return:
            The value converted to what :py:func:`eth_abi.encode` takes:
            hex strings to bytes, numeric strings to ints, addresses checksummed,
            tuples given as dicts to tuples.

        :raise ArgumentTypeError:
            The value does not fit the type.
        """
        what = f"{self.name or 'argument'} ({self.type})"

        if self.kind in (AbiKind.uint, AbiKind.int):
            value = _to_int(value, what)
            bits = self._get_bits()
            if self.kind == AbiKind.uint:
                low, high = 0, 2**bits - 1
            else:
                low, high = -(2 ** (bits - 1)), 2 ** (bits - 1) - 1
            if not low <= value <= high:
                raise ArgumentTypeError(f"{what}: {value} out of range")
            return value

        elif self.kind == AbiKind.address:
            if not isinstance(value, str) or not is_address(value):
                raise ArgumentTypeError(f"{what}: {value!r} is not an address")
            return to_checksum_address(value)

        elif self.kind == AbiKind.bool:
            if not isinstance(value, bool):
                raise ArgumentTypeError(f"{what}: expected a bool, got {value!r}")
            return value

        elif self.kind == AbiKind.string:
            if not isinstance(value, str):
                raise ArgumentTypeError(f"{what}: expected a string, got {value!r}")
            return value

        elif self.kind == AbiKind.bytes:
            return _to_bytes(value, what)

        elif self.kind == AbiKind.fixed_bytes:
            data = _to_bytes(value, what)
            size = int(_SIZED_TYPE_RE.match(self.type).group(2))
            if len(data) > size:
                raise ArgumentTypeError(f"{what}: {len(data)} bytes does not fit")
            return data

        elif self.kind == AbiKind.array:
            if not isinstance(value, (list, tuple)):
                raise ArgumentTypeError(f"{what}: expected a list, got {value!r}")
            length = _ARRAY_SUFFIX_RE.match(self.type).group(2)
            if length and int(length) != len(value):
                raise ArgumentTypeError(f"{what}: expected {length} items, got {len(value)}")
            element = self.get_element()
            return [element.validate(v) for v in value]

        elif self.kind == AbiKind.tuple:
            if isinstance(value, dict):
                try:
                    value = [value[c.name] for c in self.components]
                except KeyError as e:
                    raise ArgumentTypeError(f"{what}: missing tuple member {e}") from e
            if not isinstance(value, (list, tuple)) or len(value) != len(self.components):
                raise ArgumentTypeError(f"{what}: expected {len(self.components)} tuple members, got {value!r}")
            return tuple(c.validate(v) for c, v in zip(self.components, value))

        raise AssertionError(f"Unhandled kind {self.kind}")


def validate_arguments(params: Sequence[AbiParameter], args: Sequence[Any]) -> list[Any]:
    assert len(params) == len(args), f"Expected {len(params)} arguments, got {len(args)}"
    return [p.validate(a) for p, a in zip(params, args)]


@dataclass(slots=True, frozen=True)
class FunctionSchema:
    """Typed ABI of one function."""

    name: str

    inputs: tuple[AbiParameter, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(p.type for p in self.inputs)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.signature)[0:4])

    def encode_call(self, args: Sequence[Any]) -> bytes:
        """Mimic Solidity's ``abi.encodeWithSignature()``, with type validation."""
        if len(args) != len(self.inputs):
            raise ArgumentTypeError(f"{self.signature} takes {len(self.inputs)} arguments, got {len(args)}")
        values = validate_arguments(self.inputs, args)
        return self.selector + encode([p.type for p in self.inputs], values)


@dataclass(slots=True)
class ContractInterface:
    """Typed ABI of a contract: constructor inputs and functions by name."""

    #: Constructor inputs, empty if there is no constructor
    constructor_inputs: tuple[AbiParameter, ...]

    #: Function name → overloads
    functions: dict[str, list[FunctionSchema]]

    #: Does the ABI declare a constructor at all
    has_constructor: bool = False

    def get_function(self, name: str, arg_count: int | None = None) -> FunctionSchema:
        """Look up a function, picking the overload by argument count.

        :raise InitMethodNotFound:
            No function with the name, or no overload takes ``arg_count`` arguments.
        """
        overloads = self.functions.get(name)
        if not overloads:
            raise InitMethodNotFound(f"InitMethod {name} not found in ABI")
        if arg_count is not None:
            overloads = [f for f in overloads if len(f.inputs) == arg_count]
            if not overloads:
                raise InitMethodNotFound(f"InitMethod {name} taking {arg_count} arguments not found in ABI")
        return overloads[0]


def parse_contract_abi(abi: list[dict]) -> ContractInterface:
    """Parse a JSON ABI into a :py:class:`ContractInterface`.

    Events, errors, fallback and receive entries are skipped.
    """
    constructor_inputs = ()
    has_constructor = False
    functions: dict[str, list[FunctionSchema]] = {}

    for entry in abi:
        entry_type = entry.get("type", "function")
        if entry_type == "constructor":
            has_constructor = True
            constructor_inputs = tuple(AbiParameter.from_json(i) for i in entry.get("inputs", []))
        elif entry_type == "function":
            schema = FunctionSchema(
                name=entry["name"],
                inputs=tuple(AbiParameter.from_json(i) for i in entry.get("inputs", [])),
            )
            functions.setdefault(schema.name, []).append(schema)

    return ContractInterface(constructor_inputs=constructor_inputs, functions=functions, has_constructor=has_constructor)


def encode_constructor_args(interface: ContractInterface, args: Sequence[Any]) -> bytes:
    """ABI encode constructor arguments, to be appended to the creation code.

    :raise ConstructorArgumentMismatch:
        Argument count does not match the constructor, or args given for a contract without constructor inputs.

    :raise ArgumentTypeError:
        An argument does not match its type.
    """
    args = list(args or [])
    params = interface.constructor_inputs
    if not params:
        if args:
            raise ConstructorArgumentMismatch(f"Contract has no constructor arguments, got {len(args)}")
        return b""

    if len(args) != len(params):
        names = [p.name or p.type for p in params]
        raise ConstructorArgumentMismatch(f"Constructor takes {len(params)} arguments {names}, got {len(args)}")

    values = validate_arguments(params, args)
    return encode([p.type for p in params], values)


def decode_constructor_args(interface: ContractInterface, data: bytes) -> list[Any]:
    """Decode constructor arguments encoded by :py:func:`encode_constructor_args`."""
    params = interface.constructor_inputs
    if not params:
        return []
    return list(decode([p.type for p in params], bytes(data)))


def encode_init_data(interface: ContractInterface, method_name: str, method_args: Sequence[Any]) -> bytes:
    """Encode the call data of the init call run right after deployment.

    :raise InitMethodNotFound:
        The method is not in the ABI.
    """
    method_args = list(method_args or [])
    function = interface.get_function(method_name, len(method_args))
    return function.encode_call(method_args)
