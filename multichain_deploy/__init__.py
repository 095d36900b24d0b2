"""multichain_deploy package root.

Deploy one smart contract to many EVM chains from a single origin transaction
through a cross-chain deploy adapter and the Sygma bridge.

- :py:mod:`multichain_deploy.adapter` - salt fortification, address derivation
  and the deploy adapter protocol model
- :py:mod:`multichain_deploy.sygma` - bridge domain registry and transfer status service
- :py:mod:`multichain_deploy.deployer` - off-chain orchestration of a multichain deployment

"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"multichain-deploy needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
