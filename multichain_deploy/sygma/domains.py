"""Sygma domain registry.

A domain is one chain routed by the bridge. The list of domains
comes from the shared configuration file of the environment:

.. code-block:: json

    {
        "domains": [
            {"id": 2, "chainId": 11155111, "name": "sepolia", "type": "evm", ...},
            ...
        ]
    }

Example::

    from multichain_deploy.sygma.domains import fetch_domains
    from multichain_deploy.sygma.constants import Environment

    registry = fetch_domains(Environment.testnet)
    sepolia = registry.get_by_name("Sepolia")
    assert sepolia.chain_id == 11155111
"""

import enum
import logging
from dataclasses import dataclass
from typing import Iterable

import requests

from multichain_deploy.sygma.constants import SHARED_CONFIG_URLS, Environment
from multichain_deploy.sygma.session import DEFAULT_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class DomainType(enum.Enum):
    """Virtual machine family of a domain."""

    evm = "evm"
    substrate = "substrate"
    btc = "btc"


class UnknownDomain(Exception):
    """Domain is not in the registry."""


class DomainNameConflict(Exception):
    """A configured network name is a domain name of another chain."""


class SharedConfigError(Exception):
    """The shared configuration file could not be read."""


@dataclass(slots=True, frozen=True)
class Domain:
    """One bridge routed chain."""

    #: Sygma domain id
    id: int

    #: Chain id of the network, e.g. ``11155111`` for Sepolia
    chain_id: int

    #: Human readable name, e.g. ``sepolia``
    name: str

    #: Virtual machine family
    type: DomainType = DomainType.evm

    @staticmethod
    def from_json(data: dict) -> "Domain":
        """Parse a domain entry of the shared configuration file."""
        try:
            return Domain(
                id=int(data["id"]),
                chain_id=int(data["chainId"]),
                name=data["name"],
                type=DomainType(data.get("type", "evm").lower()),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise SharedConfigError(f"Bad domain entry {data}") from e


class DomainRegistry:
    """Lookup over the domains of one environment.

    Name lookups are case-insensitive.
    """

    def __init__(self, domains: Iterable[Domain]):
        self.domains: list[Domain] = list(domains)
        self._by_name = {d.name.lower(): d for d in self.domains}
        self._by_chain_id = {d.chain_id: d for d in self.domains}
        self._by_id = {d.id: d for d in self.domains}

    def __repr__(self):
        return f"<DomainRegistry {', '.join(d.name for d in self.domains)}>"

    def __len__(self):
        return len(self.domains)

    def __iter__(self):
        return iter(self.domains)

    def find_by_name(self, name: str) -> Domain | None:
        return self._by_name.get(name.lower())

    def find_by_chain_id(self, chain_id: int) -> Domain | None:
        return self._by_chain_id.get(chain_id)

    def get_by_name(self, name: str) -> Domain:
        domain = self.find_by_name(name)
        if domain is None:
            raise UnknownDomain(f"No domain named {name}, we have {list(self._by_name)}")
        return domain

    def get_by_chain_id(self, chain_id: int) -> Domain:
        domain = self.find_by_chain_id(chain_id)
        if domain is None:
            raise UnknownDomain(f"No domain for chain id {chain_id}")
        return domain

    def get_by_id(self, domain_id: int) -> Domain:
        try:
            return self._by_id[domain_id]
        except KeyError:
            raise UnknownDomain(f"No domain with id {domain_id}")

    def add_alias(self, name: str, chain_id: int) -> Domain | None:
        """Make a locally configured network name resolve to the domain of its chain.

        :return:
            The aliased domain, or ``None`` if the chain is not routed.

        :raise DomainNameConflict:
            The name is already taken by a domain of another chain.
        """
        existing = self.find_by_name(name)
        if existing is not None and existing.chain_id != chain_id:
            raise DomainNameConflict(f"Network {name} is configured with chain id {chain_id}, but Sygma domain {existing.name}({existing.id}) is chain {existing.chain_id}")

        domain = self.find_by_chain_id(chain_id)
        if domain is not None:
            self._by_name.setdefault(name.lower(), domain)
        return domain

    def get_evm_domains(self) -> list[Domain]:
        return [d for d in self.domains if d.type == DomainType.evm]


def parse_shared_config(data: dict) -> DomainRegistry:
    """Parse the shared configuration JSON into a registry.

    :raise SharedConfigError:
        Missing or broken ``domains`` list.
    """
    domains = data.get("domains")
    if not isinstance(domains, list):
        raise SharedConfigError(f"Shared config has no domains list, keys are {list(data)}")
    return DomainRegistry(Domain.from_json(d) for d in domains)


def fetch_domains(
    environment: Environment,
    shared_config_url: str | None = None,
    session: requests.Session | None = None,
) -> DomainRegistry:
    """Download the domain list of an environment.

    :param environment:
        Sygma environment.

    :param shared_config_url:
        Override the shared configuration file location.
        Needed for the local environment.

    :param session:
        HTTP session to use. Plain ``requests`` if not given.

    :raise requests.HTTPError:
        The configuration file could not be fetched.
    """
    if shared_config_url is None:
        if environment not in SHARED_CONFIG_URLS:
            raise SharedConfigError(f"No shared config URL known for {environment.value}, give shared_config_url")
        shared_config_url = SHARED_CONFIG_URLS[environment]

    logger.info("Fetching Sygma %s domains from %s", environment.value, shared_config_url)

    getter = session or requests
    response = getter.get(shared_config_url, timeout=DEFAULT_REQUEST_TIMEOUT)
    response.raise_for_status()
    registry = parse_shared_config(response.json())

    logger.info("Loaded %d domains: %s", len(registry), ", ".join(f"{d.name}({d.id})" for d in registry))
    return registry
