"""Per-network deploy arguments.

Users describe a multichain deployment as a mapping from network name
to constructor arguments and an optional init call:

.. code-block:: python

    network_args = {
        "sepolia": NetworkArgument(args=["Hello from Sepolia"]),
        "holesky": NetworkArgument(
            args=["Hello from Holesky"],
            init_data=InitCall("setName", ["Pepe"]),
        ),
    }

:py:func:`map_network_args` turns this into the parallel arrays
the deploy adapter takes, aligned with bridge domain ids.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from multichain_deploy.abi import ContractInterface, encode_constructor_args, encode_init_data
from multichain_deploy.sygma.domains import DomainRegistry
from multichain_deploy.utils import format_name_list

logger = logging.getLogger(__name__)


class UnavailableNetworks(Exception):
    """Network names in the deploy arguments are not routed by the bridge."""


class DuplicateNetworks(Exception):
    """Several network names in the deploy arguments resolve to the same bridge domain."""


@dataclass(slots=True)
class InitCall:
    """A call run on the new contract right after it is deployed."""

    #: Function name in the contract ABI
    method_name: str

    #: Function arguments
    method_args: list[Any] = field(default_factory=list)


@dataclass(slots=True)
class NetworkArgument:
    """Deploy arguments of one network."""

    #: Constructor arguments
    args: list[Any] = field(default_factory=list)

    #: Optional call after deployment
    init_data: InitCall | None = None


@dataclass(slots=True)
class MappedNetworkArgs:
    """Network arguments encoded into the adapter's parallel arrays.

    All lists are in the order of the network argument mapping.
    """

    #: Bridge domain ids
    deploy_domain_ids: list[int]

    #: ABI encoded constructor arguments
    constructor_args: list[bytes]

    #: Init call data, empty bytes for no init call
    init_datas: list[bytes]

    #: Network names as given by the user
    network_names: list[str]


def map_network_args(
    interface: ContractInterface,
    network_args: dict[str, NetworkArgument],
    domains: DomainRegistry,
) -> MappedNetworkArgs:
    """Encode per-network arguments against the contract ABI and the domain registry.

    Network names match domain names case-insensitively.

    :raise UnavailableNetworks:
        Some network names have no domain. All of them are listed.

    :raise DuplicateNetworks:
        Two network names resolve to the same domain, through case or a configured alias.

    :raise multichain_deploy.abi.ConstructorArgumentMismatch:
        Constructor arguments do not fit the ABI.

    :raise multichain_deploy.abi.InitMethodNotFound:
        Init method is not in the ABI.
    """
    assert network_args, "No networks to deploy to"

    missing = [name for name in network_args if domains.find_by_name(name) is None]
    if missing:
        raise UnavailableNetworks(
            f"Unavailable Networks in networkArgs: The following networks are not routed by the bridge: {format_name_list(missing)}. "
            f"Available networks are: {format_name_list(d.name for d in domains)}"
        )

    # One deposit per domain, the indexer reports one status per destination
    first_names: dict[int, str] = {}
    duplicates = []
    for name in network_args:
        domain = domains.get_by_name(name)
        if domain.id in first_names:
            duplicates.append(f"{first_names[domain.id]} and {name} are both {domain.name}({domain.id})")
        else:
            first_names[domain.id] = name
    if duplicates:
        raise DuplicateNetworks(f"Duplicate Networks in networkArgs: {'; '.join(duplicates)}")

    mapped = MappedNetworkArgs(deploy_domain_ids=[], constructor_args=[], init_datas=[], network_names=[])
    for name, network_arg in network_args.items():
        domain = domains.get_by_name(name)
        mapped.deploy_domain_ids.append(domain.id)
        mapped.constructor_args.append(encode_constructor_args(interface, network_arg.args))
        if network_arg.init_data is not None:
            init_data = encode_init_data(interface, network_arg.init_data.method_name, network_arg.init_data.method_args)
        else:
            init_data = b""
        mapped.init_datas.append(init_data)
        mapped.network_names.append(name)

    logger.debug("Mapped network args for %s to domains %s", mapped.network_names, mapped.deploy_domain_ids)
    return mapped
