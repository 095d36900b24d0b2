"""Deposit payload encoding for the bridge's permissionless generic handler.

The deploy adapter hands the bridge an opaque payload on the origin chain.
On the destination chain the bridge's generic handler parses it and calls
``execute()`` on the adapter there.

The payload format is:

- bytes 0-31: gas limit for the execution (big-endian uint256)
- bytes 32-33: length of the function selector (big-endian uint16, always ``4``)
- next 4 bytes: ``execute(address,bytes,bytes,bytes32)`` selector
- 1 byte length (``20``) + address of the contract to execute (the adapter)
- 1 byte length (``20``) + execution data depositor (the adapter)
- the rest: ``abi.encode(address(0), initCode, initData, fortifiedSalt)`` without its first word

The handler replaces the dropped first word with the depositor,
so the destination adapter can check the request came from its own twin.

Example::

    from multichain_deploy.adapter.payload import encode_deposit_data, decode_deposit_data

    data = encode_deposit_data(2_000_000, adapter_address, init_code, b"", fortified_salt)
    deposit = decode_deposit_data(data)
    assert deposit.execute_contract == adapter_address
"""

from dataclasses import dataclass

from eth_abi import decode, encode
from eth_typing import HexAddress
from eth_utils import to_canonical_address, to_checksum_address
from web3 import Web3

from multichain_deploy.adapter.fortify import to_bytes32

#: Solidity signature of the adapter execute callback
EXECUTE_SIGNATURE = "execute(address,bytes,bytes,bytes32)"

#: 4 byte selector of :py:data:`EXECUTE_SIGNATURE`
EXECUTE_SELECTOR = Web3.keccak(text=EXECUTE_SIGNATURE)[0:4]

#: ABI types of the execute callback arguments
EXECUTE_ARG_TYPES = ["address", "bytes", "bytes", "bytes32"]

#: Ethereum 0x0000000000000000000000000000000000000000 address
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: Size of the gas limit field
GAS_LIMIT_LENGTH = 32

#: Size of the function selector length field
SELECTOR_LENGTH_LENGTH = 2

#: One EVM word
WORD = 32


class MalformedDepositData(Exception):
    """Deposit payload could not be parsed."""


@dataclass(slots=True, frozen=True)
class DepositData:
    """Parsed generic handler deposit payload."""

    #: Gas limit the bridge should give to the execution
    gas_limit: int

    #: Function selector to call on :py:attr:`execute_contract`
    selector: bytes

    #: Contract the bridge calls on the destination chain
    execute_contract: HexAddress

    #: Address the bridge passes as the first argument of the call
    depositor: HexAddress

    #: ABI encoded call arguments, without the depositor word
    execution_data: bytes


def encode_execution_data(init_code: bytes, init_data: bytes, fortified_salt: bytes | str) -> bytes:
    """Encode ``execute()`` arguments without the leading depositor word."""
    encoded = encode(EXECUTE_ARG_TYPES, [ZERO_ADDRESS, bytes(init_code), bytes(init_data), to_bytes32(fortified_salt)])
    return encoded[WORD:]


def encode_deposit_data(
    gas_limit: int,
    adapter: HexAddress | str,
    init_code: bytes,
    init_data: bytes,
    fortified_salt: bytes | str,
) -> bytes:
    """Build the payload the adapter deposits to the bridge.

    :param gas_limit:
        Execution gas limit on the destination chain.

    :param adapter:
        Adapter address. Used both as the execute target and as the depositor,
        as the adapter has the same address on every chain.

    :param init_code:
        Contract init code with the destination chain constructor arguments appended.

    :param init_data:
        Optional call data run on the new contract after deployment.

    :param fortified_salt:
        Salt from :py:func:`multichain_deploy.adapter.fortify.fortify`.
    """
    assert gas_limit >= 0, f"Bad gas limit {gas_limit}"
    adapter_bytes = to_canonical_address(adapter)
    return (
        gas_limit.to_bytes(GAS_LIMIT_LENGTH, "big")
        + len(EXECUTE_SELECTOR).to_bytes(SELECTOR_LENGTH_LENGTH, "big")
        + EXECUTE_SELECTOR
        + bytes([len(adapter_bytes)])
        + adapter_bytes
        + bytes([len(adapter_bytes)])
        + adapter_bytes
        + encode_execution_data(init_code, init_data, fortified_salt)
    )


def decode_deposit_data(data: bytes) -> DepositData:
    """Parse a deposit payload.

    :raise MalformedDepositData:
        If the payload is truncated.
    """
    data = bytes(data)
    pos = 0

    def _take(length: int) -> bytes:
        nonlocal pos
        if pos + length > len(data):
            raise MalformedDepositData(f"Deposit data truncated at offset {pos}, needed {length} bytes, total {len(data)}")
        chunk = data[pos : pos + length]
        pos += length
        return chunk

    gas_limit = int.from_bytes(_take(GAS_LIMIT_LENGTH), "big")
    selector_length = int.from_bytes(_take(SELECTOR_LENGTH_LENGTH), "big")
    selector = _take(selector_length)
    execute_contract = _take(_take(1)[0])
    depositor = _take(_take(1)[0])

    return DepositData(
        gas_limit=gas_limit,
        selector=selector,
        execute_contract=to_checksum_address(execute_contract),
        depositor=to_checksum_address(depositor),
        execution_data=data[pos:],
    )


def encode_execute_call(deposit: DepositData) -> bytes:
    """Build the call data the generic handler sends to the execute contract.

    ``selector ‖ abi.encode(depositor) ‖ execution data``
    """
    return deposit.selector + encode(["address"], [deposit.depositor]) + deposit.execution_data


def decode_execution_data(deposit: DepositData) -> tuple[bytes, bytes, bytes]:
    """Decode ``(init_code, init_data, fortified_salt)`` from a parsed deposit."""
    if deposit.selector != EXECUTE_SELECTOR:
        raise MalformedDepositData(f"Unexpected selector {deposit.selector.hex()}, expected {EXECUTE_SELECTOR.hex()}")
    _, init_code, init_data, fortified_salt = decode(EXECUTE_ARG_TYPES, encode(["address"], [deposit.depositor]) + deposit.execution_data)
    return init_code, init_data, fortified_salt
