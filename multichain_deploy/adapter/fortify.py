"""Salt fortification and deterministic deployment address derivation.

The deploy adapter never hands the caller chosen salt to the factory as is.
It first *fortifies* it so that the salt is bound to the adapter itself,
to the original sender and to the uniqueness flag:

.. code-block:: text

    fortified salt (32 bytes) =
        adapter address        (20 bytes)
        uniqueness flag        (1 byte, 0x01 = unique per chain, 0x00 = same address everywhere)
        keccak256(sender ‖ raw salt)[:11]

The factory is a CreateX style CREATE3 factory. Before deploying it *guards*
the salt: a salt starting with the caller address is permissioned to that caller,
and the uniqueness flag adds the chain id to the guarded salt
(cross-chain redeploy protection). The deployed address then only depends on the
factory address and the guarded salt, not on the init code, which lets every
chain receive different constructor arguments while sharing one address.

Example::

    from multichain_deploy.adapter.fortify import fortify, compute_address

    fortified_salt = fortify(adapter_address, deployer_address, salt, is_unique_per_chain=False)
    address = compute_address(factory_address, fortified_salt, chain_id=1)

- `CreateX factory <https://github.com/pcaversaccio/createx>`__
"""

import logging

from eth_abi import encode
from eth_typing import HexAddress
from eth_utils import to_canonical_address, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)

#: Uniqueness flag byte for salts that deploy to a different address on every chain
UNIQUE_PER_CHAIN_FLAG = 0x01

#: Uniqueness flag byte for salts that deploy to the same address on every chain
NON_UNIQUE_FLAG = 0x00

#: How many bytes of ``keccak256(sender ‖ salt)`` end up in the fortified salt
TRUNCATED_HASH_LENGTH = 11

#: CREATE3 proxy child bytecode deployed with CREATE2 by the factory.
#:
#: The proxy CREATEs the actual contract from whatever init code it is called with.
CREATE3_PROXY_INITCODE = HexBytes("0x67363d3d37363d34f03d5260086018f3")

#: Init code hash of :py:data:`CREATE3_PROXY_INITCODE`
CREATE3_PROXY_INITCODE_HASH = Web3.keccak(CREATE3_PROXY_INITCODE)


class InvalidSalt(Exception):
    """The factory salt guard does not accept this salt for this deployer."""


def to_bytes32(value: bytes | str) -> bytes:
    """Convert a hex string or raw bytes to a 32 bytes value.

    :raise AssertionError:
        If the value is not exactly 32 bytes.
    """
    data = bytes(HexBytes(value))
    assert len(data) == 32, f"Expected 32 bytes, got {len(data)} bytes: {data.hex()}"
    return data


def fortify(
    adapter: HexAddress | str,
    sender: HexAddress | str,
    raw_salt: bytes | str,
    is_unique_per_chain: bool,
) -> bytes:
    """Fortify a caller chosen salt.

    Pure and total: the same inputs always produce the same salt,
    changing any of the inputs changes the result.

    :param adapter:
        Deploy adapter address. Must be the same on every chain.

    :param sender:
        The account that asked for the deployment.

    :param raw_salt:
        Caller chosen 32 bytes salt.

    :param is_unique_per_chain:
        Deploy to a different address on every chain.

    :return:
        32 bytes fortified salt
    """
    raw_salt = to_bytes32(raw_salt)
    flag = UNIQUE_PER_CHAIN_FLAG if is_unique_per_chain else NON_UNIQUE_FLAG
    # abi.encodePacked(address, bytes)
    sender_hash = Web3.keccak(to_canonical_address(sender) + raw_salt)
    return to_canonical_address(adapter) + bytes([flag]) + sender_hash[:TRUNCATED_HASH_LENGTH]


def is_unique_per_chain(fortified_salt: bytes | str) -> bool:
    """Read the uniqueness flag back from a fortified salt."""
    return to_bytes32(fortified_salt)[20] == UNIQUE_PER_CHAIN_FLAG


def guard_salt(
    deployer: HexAddress | str,
    salt: bytes | str,
    chain_id: int,
) -> bytes:
    """Apply the factory's permissioned salt guard.

    Only the permissioned variants are supported, as the adapter always
    prefixes the salt with its own address.

    :param deployer:
        The account calling the factory. For adapter deployments this is the adapter.

    :param salt:
        Fortified salt.

    :param chain_id:
        Chain id of the chain where the factory runs.

    :raise InvalidSalt:
        The salt is not prefixed by the deployer, or the flag byte is neither 0 or 1.
    """
    salt = to_bytes32(salt)
    deployer_bytes = to_canonical_address(deployer)

    if salt[0:20] != deployer_bytes:
        raise InvalidSalt(f"Salt {salt.hex()} is not permissioned to deployer {deployer}")

    flag = salt[20]
    if flag == UNIQUE_PER_CHAIN_FLAG:
        return Web3.keccak(encode(["address", "uint256", "bytes32"], [to_checksum_address(deployer), chain_id, salt]))
    elif flag == NON_UNIQUE_FLAG:
        return Web3.keccak(bytes(12) + deployer_bytes + salt)
    else:
        raise InvalidSalt(f"Unknown redeploy protection flag {flag:#04x} in salt {salt.hex()}")


def compute_create2_address(
    deployer: HexAddress | str,
    salt: bytes | str,
    init_code_hash: bytes | str,
) -> HexAddress:
    """Compute a standard CREATE2 address.

    ``keccak256(0xff ‖ deployer ‖ salt ‖ init_code_hash)[12:]``
    """
    preimage = b"\xff" + to_canonical_address(deployer) + to_bytes32(salt) + to_bytes32(init_code_hash)
    return to_checksum_address(Web3.keccak(preimage)[12:])


def compute_create_address(deployer: HexAddress | str, nonce: int) -> HexAddress:
    """Compute a CREATE address for nonces below 0x80.

    The RLP encoding of ``[deployer, nonce]`` is short enough to write out by hand.
    """
    assert 0 < nonce < 0x80, f"Only single byte nonces supported, got {nonce}"
    rlp = b"\xd6\x94" + to_canonical_address(deployer) + bytes([nonce])
    return to_checksum_address(Web3.keccak(rlp)[12:])


def compute_create3_address(
    factory: HexAddress | str,
    guarded_salt: bytes | str,
    init_code_hash: bytes | str = CREATE3_PROXY_INITCODE_HASH,
) -> HexAddress:
    """Compute a CREATE3 address from an already guarded salt.

    Two steps: CREATE2 the proxy, then the proxy CREATEs the contract with nonce 1.
    """
    proxy = compute_create2_address(factory, guarded_salt, init_code_hash)
    return compute_create_address(proxy, 1)


def compute_address(
    factory: HexAddress | str,
    fortified_salt: bytes | str,
    chain_id: int,
    init_code_hash: bytes | str = CREATE3_PROXY_INITCODE_HASH,
) -> HexAddress:
    """Compute the address a fortified salt deploys to.

    The guarding deployer is read from the salt prefix (the adapter address).
    The formula is the same on every chain, provided the adapter and the factory
    share their address on every chain.

    :param chain_id:
        Target chain id. Only affects salts flagged unique per chain.
    """
    fortified_salt = to_bytes32(fortified_salt)
    adapter = to_checksum_address(fortified_salt[0:20])
    guarded = guard_salt(adapter, fortified_salt, chain_id)
    return compute_create3_address(factory, guarded, init_code_hash)


def compute_address_for_chain(
    factory: HexAddress | str,
    adapter: HexAddress | str,
    sender: HexAddress | str,
    raw_salt: bytes | str,
    is_unique_per_chain: bool,
    chain_id: int,
) -> HexAddress:
    """Fortify and derive the address in one go for an explicit chain id."""
    fortified_salt = fortify(adapter, sender, raw_salt, is_unique_per_chain)
    return compute_address(factory, fortified_salt, chain_id)
