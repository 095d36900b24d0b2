"""Simulated network testing helpers.

A ``Greeter`` contract model with a constructor argument and an init method,
and a ready made three domain network mirroring a local Sygma setup:
the origin chain is domain 10, the adapter deploys to domains 20 and 30.

Example::

    from multichain_deploy.testing import DOMAIN_ID, create_test_network

    network = create_test_network()
    adapter = network.get_adapter(DOMAIN_ID)
"""

import json
import logging
import threading

from eth_abi import decode
from eth_typing import HexAddress
from hexbytes import HexBytes
from requests import Response
from web3 import Web3

from multichain_deploy.adapter.chain import Revert, SimulatedChain, SimulatedContract
from multichain_deploy.adapter.simulation import DEFAULT_DEPLOYER, SimulatedNetwork
from multichain_deploy.sygma.session import SygmaSession

logger = logging.getLogger(__name__)

#: Domain of the origin chain
DOMAIN_ID = 10

#: Remote domains
OTHER_DOMAIN_ID_1 = 20
OTHER_DOMAIN_ID_2 = 30

#: Domain id → chain id
TEST_DOMAINS = {
    DOMAIN_ID: 5,
    OTHER_DOMAIN_ID_1: 11155111,
    OTHER_DOMAIN_ID_2: 17000,
}

#: Domain id → network name
TEST_DOMAIN_NAMES = {
    DOMAIN_ID: "goerli",
    OTHER_DOMAIN_ID_1: "sepolia",
    OTHER_DOMAIN_ID_2: "holesky",
}

#: Simulated creation code of :py:class:`Greeter`
GREETER_CODE = HexBytes(Web3.keccak(text="Greeter"))

GREETER_ABI = [
    {
        "type": "constructor",
        "inputs": [{"internalType": "string", "name": "greeting", "type": "string"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "setName",
        "inputs": [{"internalType": "string", "name": "name", "type": "string"}],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "greet",
        "inputs": [],
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "NameSet",
        "inputs": [{"indexed": False, "internalType": "string", "name": "name", "type": "string"}],
        "anonymous": False,
    },
]


class Greeter(SimulatedContract):
    """Contract with a constructor argument and an init method.

    ``setName("")`` reverts, to exercise failing init calls.
    """

    FUNCTIONS = {
        "setName(string)": "set_name",
    }

    def __init__(self, chain: SimulatedChain, address: HexAddress | str, greeting: str):
        super().__init__(chain, address)
        self.storage["greeting"] = greeting

    @classmethod
    def construct(cls, chain: SimulatedChain, address: HexAddress | str, constructor_args: bytes) -> "Greeter":
        (greeting,) = decode(["string"], constructor_args)
        return cls(chain, address, greeting)

    @property
    def greeting(self) -> str:
        return self.storage["greeting"]

    @property
    def name(self) -> str | None:
        return self.storage.get("name")

    def set_name(self, sender: HexAddress, name: str):
        if not name:
            raise Revert("Empty name")
        self.storage["name"] = name
        self.emit("NameSet", name=name)


def create_test_network(
    domains: dict[int, int] | None = None,
    deployer: HexAddress | str = DEFAULT_DEPLOYER,
    funding: int = 10 * 10**18,
) -> SimulatedNetwork:
    """Simulated network that knows :py:class:`Greeter`, deployer funded on the origin domain.

    :param domains:
        Domain id → chain id. Defaults to :py:data:`TEST_DOMAINS`.
        The first domain is the origin.
    """
    if domains is None:
        domains = TEST_DOMAINS
    network = SimulatedNetwork(domains)
    for chain in network.chains.values():
        chain.register_code(GREETER_CODE, Greeter.construct)
    network.fund(next(iter(domains)), deployer, funding)
    return network


class SimulatedSygmaSession(SygmaSession):
    """Sygma indexer answering from a simulated network.

    Serves ``/api/transfers/txHash/{txHash}`` out of
    :py:meth:`~multichain_deploy.adapter.simulation.SimulatedNetwork.get_transfers`.
    Unknown transactions get HTTP 404, like the real indexer.

    :param relay_on_poll:
        Relay pending deposits before answering, so polling eventually resolves.
    """

    def __init__(self, network: SimulatedNetwork, relay_on_poll=True, indexer_url="http://simulated-indexer"):
        super().__init__(indexer_url)
        self.network = network
        self.relay_on_poll = relay_on_poll
        self.requests: list[str] = []
        # Polling threads share the simulated chains
        self._lock = threading.Lock()

    def get(self, url, **kwargs) -> Response:
        prefix = f"{self.indexer_url}/api/transfers/txHash/"
        with self._lock:
            self.requests.append(url)
            if self.relay_on_poll:
                self.network.relay_deposits()
            transfers = self.network.get_transfers(url[len(prefix) :]) if url.startswith(prefix) else []

        response = Response()
        response.url = url
        if transfers:
            response.status_code = 200
            response._content = json.dumps(transfers).encode("utf-8")
        else:
            response.status_code = 404
            response._content = b'{"error": "Transfer not found"}'
        return response
