"""Mapping per-network deploy arguments to adapter arrays."""

import pytest
from eth_abi import decode

from multichain_deploy.abi import ConstructorArgumentMismatch, InitMethodNotFound, parse_contract_abi
from multichain_deploy.deployer.arguments import DuplicateNetworks, InitCall, NetworkArgument, UnavailableNetworks, map_network_args
from multichain_deploy.testing import DOMAIN_ID, GREETER_ABI, OTHER_DOMAIN_ID_1, OTHER_DOMAIN_ID_2


@pytest.fixture()
def interface():
    return parse_contract_abi(GREETER_ABI)


def test_map_network_args_keeps_order(interface, domains):
    """Arrays follow the order of the mapping, not the domain ids."""
    mapped = map_network_args(
        interface,
        {
            "holesky": NetworkArgument(args=["Hello Holesky"]),
            "Goerli": NetworkArgument(args=["Hello Goerli"], init_data=InitCall("setName", ["Pepe"])),
            "sepolia": NetworkArgument(args=["Hello Sepolia"]),
        },
        domains,
    )

    assert mapped.deploy_domain_ids == [OTHER_DOMAIN_ID_2, DOMAIN_ID, OTHER_DOMAIN_ID_1]
    assert mapped.network_names == ["holesky", "Goerli", "sepolia"]
    assert [decode(["string"], a)[0] for a in mapped.constructor_args] == ["Hello Holesky", "Hello Goerli", "Hello Sepolia"]
    assert mapped.init_datas[0] == b""
    assert mapped.init_datas[1][4:] != b""
    assert mapped.init_datas[2] == b""


def test_map_network_args_lists_every_unavailable_network(interface, domains):
    with pytest.raises(UnavailableNetworks) as exc_info:
        map_network_args(
            interface,
            {
                "sepolia": NetworkArgument(args=["a"]),
                "mumbai": NetworkArgument(args=["b"]),
                "fuji": NetworkArgument(args=["c"]),
            },
            domains,
        )

    message = str(exc_info.value)
    assert "mumbai and fuji" in message
    assert "goerli, sepolia and holesky" in message


def test_map_network_args_bad_constructor(interface, domains):
    with pytest.raises(ConstructorArgumentMismatch):
        map_network_args(interface, {"sepolia": NetworkArgument(args=[])}, domains)


def test_map_network_args_bad_init_method(interface, domains):
    with pytest.raises(InitMethodNotFound):
        map_network_args(interface, {"sepolia": NetworkArgument(args=["a"], init_data=InitCall("nope"))}, domains)


def test_map_network_args_alias(interface, domains):
    """A configured network name aliased to a routed chain maps to its domain."""
    domains.add_alias("my-sepolia-node", 11155111)
    mapped = map_network_args(interface, {"my-sepolia-node": NetworkArgument(args=["a"])}, domains)
    assert mapped.deploy_domain_ids == [OTHER_DOMAIN_ID_1]


def test_map_network_args_same_domain_twice(interface, domains):
    """Names differing only in case, or an alias next to its domain name, would deposit twice to one domain."""
    with pytest.raises(DuplicateNetworks, match=r"sepolia and Sepolia are both sepolia\(20\)"):
        map_network_args(
            interface,
            {
                "sepolia": NetworkArgument(args=["a"]),
                "Sepolia": NetworkArgument(args=["b"]),
            },
            domains,
        )

    domains.add_alias("my-holesky", 17000)
    with pytest.raises(DuplicateNetworks, match="holesky and my-holesky"):
        map_network_args(
            interface,
            {
                "holesky": NetworkArgument(args=["a"]),
                "my-holesky": NetworkArgument(args=["b"]),
            },
            domains,
        )
