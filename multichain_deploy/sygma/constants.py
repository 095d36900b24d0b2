"""Sygma bridge constants.

Sygma runs three environments. Each has its own shared configuration file
listing the routed domains, its own indexer API and its own explorer.

Sygma domain ids are the bridge's own identifiers, not EVM chain ids.

- `Sygma documentation <https://docs.buildwithsygma.com/>`__
- `Sygma explorer <https://scan.buildwithsygma.com/>`__
"""

import enum

from eth_typing import HexAddress
from eth_utils import to_checksum_address


class Environment(enum.Enum):
    """Sygma deployment environment."""

    #: Development environment, used for internal testing
    devnet = "devnet"

    #: Public testnet
    testnet = "testnet"

    #: Mainnet
    mainnet = "mainnet"

    #: Local bridge set up with ``docker compose``, or :py:class:`~multichain_deploy.adapter.simulation.SimulatedNetwork`
    local = "local"


#: Shared domain configuration file per environment
SHARED_CONFIG_URLS: dict[Environment, str] = {
    Environment.devnet: "https://chainbridge-assets-stage.s3.us-east-2.amazonaws.com/shared-config-dev.json",
    Environment.testnet: "https://chainbridge-assets-stage.s3.us-east-2.amazonaws.com/shared-config-test.json",
    Environment.mainnet: "https://sygma-assets-mainnet.s3.us-east-2.amazonaws.com/shared-config-mainnet.json",
}

#: Transfer indexer API per environment
INDEXER_URLS: dict[Environment, str] = {
    Environment.devnet: "https://api.test.buildwithsygma.com",
    Environment.testnet: "https://api.test.buildwithsygma.com",
    Environment.mainnet: "https://api.buildwithsygma.com",
}

#: Transfer explorer per environment
EXPLORER_URLS: dict[Environment, str] = {
    Environment.devnet: "https://scan.test.buildwithsygma.com",
    Environment.testnet: "https://scan.test.buildwithsygma.com",
    Environment.mainnet: "https://scan.buildwithsygma.com",
}

#: Local docker setup ports
LOCAL_INDEXER_URL = "http://localhost:8000"

#: Local docker setup explorer
LOCAL_EXPLORER_URL = "http://localhost:3000"

#: Cross-chain deploy adapter address.
#:
#: Deployed with CREATE3 so the address is the same on every routed chain.
ADAPTER_ADDRESS: HexAddress = to_checksum_address("0x85d62ad850b322152bf4ad9147bfbf097da42217")

#: Seconds between transfer status checks
DEFAULT_POLL_INTERVAL = 5.0

#: Multiplier applied to the estimated deploy gas to get the gas limit of remote executions
GAS_LIMIT_MULTIPLIER = 1.4

#: Transfer statuses reported by the indexer
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_EXECUTED = "executed"
TRANSFER_STATUS_FAILED = "failed"
