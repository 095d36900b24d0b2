"""Bridge deposit payload encoding."""

import pytest
from eth_abi import encode
from eth_utils import to_canonical_address

from multichain_deploy.adapter.fortify import fortify
from multichain_deploy.adapter.payload import (
    EXECUTE_SELECTOR,
    MalformedDepositData,
    decode_deposit_data,
    decode_execution_data,
    encode_deposit_data,
    encode_execute_call,
)

ADAPTER = "0x85d62ad850b322152bf4ad9147bfbf097da42217"
SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
SALT = "0x" + "ca" * 32


@pytest.fixture()
def fortified_salt() -> bytes:
    return fortify(ADAPTER, SENDER, SALT, False)


def test_deposit_data_layout(fortified_salt):
    """Header fields sit at fixed offsets."""
    data = encode_deposit_data(2_000_000, ADAPTER, b"\x60\x80", b"", fortified_salt)
    adapter = to_canonical_address(ADAPTER)

    assert int.from_bytes(data[0:32], "big") == 2_000_000
    assert data[32:34] == b"\x00\x04"
    assert data[34:38] == EXECUTE_SELECTOR
    assert data[38] == 20
    assert data[39:59] == adapter
    assert data[59] == 20
    assert data[60:80] == adapter


def test_execution_data_drops_depositor_word(fortified_salt):
    """The bridge prepends the depositor, so the payload leaves it out."""
    data = encode_deposit_data(1, ADAPTER, b"\x01\x02", b"\x03", fortified_salt)
    full = encode(["address", "bytes", "bytes", "bytes32"], ["0x0000000000000000000000000000000000000000", b"\x01\x02", b"\x03", fortified_salt])
    assert data[80:] == full[32:]


def test_execute_call_decodes_to_execute_args(fortified_salt):
    """What the bridge calls the adapter with carries init code, init data and salt."""
    data = encode_deposit_data(500_000, ADAPTER, b"\xaa" * 100, b"\xbb" * 36, fortified_salt)
    deposit = decode_deposit_data(data)

    assert deposit.gas_limit == 500_000
    assert deposit.execute_contract.lower() == ADAPTER
    assert deposit.depositor.lower() == ADAPTER

    call = encode_execute_call(deposit)
    assert call[0:4] == EXECUTE_SELECTOR

    init_code, init_data, salt = decode_execution_data(deposit)
    assert init_code == b"\xaa" * 100
    assert init_data == b"\xbb" * 36
    assert salt == fortified_salt


def test_truncated_deposit_data(fortified_salt):
    data = encode_deposit_data(1, ADAPTER, b"", b"", fortified_salt)
    with pytest.raises(MalformedDepositData, match="truncated"):
        decode_deposit_data(data[:50])
