"""Deploy adapter clients."""

from unittest.mock import MagicMock, patch

import pytest
from hexbytes import HexBytes

from multichain_deploy.adapter.contract import DeployRequest
from multichain_deploy.deployer.client import (
    SIMULATED_CREATE_BASE_GAS,
    DeployTransactionFailed,
    Web3DeployAdapter,
)
from multichain_deploy.testing import DOMAIN_ID, GREETER_CODE, OTHER_DOMAIN_ID_1

SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ADAPTER = "0x85d62ad850b322152bf4ad9147bfbf097da42217"
TX_HASH = HexBytes("0x" + "12" * 32)


@pytest.fixture()
def request_() -> DeployRequest:
    return DeployRequest(
        init_code=bytes(GREETER_CODE),
        gas_limit=100_000,
        salt=b"\x01" * 32,
        is_unique_per_chain=False,
        constructor_args=[b"\x00" * 32],
        init_datas=[b""],
        destination_domain_ids=[OTHER_DOMAIN_ID_1],
    )


@pytest.fixture()
def web3_adapter():
    web3 = MagicMock()
    contract = MagicMock()
    with patch("multichain_deploy.deployer.client.get_deployed_contract", return_value=contract):
        adapter = Web3DeployAdapter(web3, ADAPTER, sender=SENDER)
    return adapter


def test_simulated_client(client, deployer):
    """Simulated client answers as the configured sender on the origin domain."""
    assert client.get_sender() == deployer
    assert client.domain_id() == DOMAIN_ID
    assert client.get_chain_id() == 5
    assert client.estimate_deploy_gas(b"\x00" * 10) == SIMULATED_CREATE_BASE_GAS + 2000
    assert client.fortify(b"\x01" * 32, False)[0:20] == bytes(HexBytes(client.adapter.address))


def test_simulated_client_compute_address(client):
    salt = b"\x01" * 32
    assert client.compute_contract_address(salt, False) == client.compute_contract_address(salt, False, 17000)
    assert client.compute_contract_address(salt, True, 5) != client.compute_contract_address(salt, True, 17000)


def test_web3_deploy_forces_value(web3_adapter, request_, caplog):
    """Fee sum wins over a value in the transaction options."""
    func = web3_adapter.contract.functions.deploy.return_value
    func.transact.return_value = TX_HASH
    web3_adapter.web3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 1}

    tx_hash = web3_adapter.deploy(request_, [10], 10, tx_options={"value": 5, "gas": 1_000_000})

    assert tx_hash == TX_HASH
    tx_params = func.transact.call_args.args[0]
    assert tx_params == {"value": 10, "gas": 1_000_000, "from": SENDER}
    assert "Ignoring value" in caplog.text


def test_web3_deploy_reverted(web3_adapter, request_):
    func = web3_adapter.contract.functions.deploy.return_value
    func.transact.return_value = TX_HASH
    web3_adapter.web3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "blockNumber": 7}

    with pytest.raises(DeployTransactionFailed, match="block 7"):
        web3_adapter.deploy(request_, [10], 10)


def test_web3_deploy_signs_with_account(request_):
    """A local account signs and sends the raw transaction."""
    web3 = MagicMock()
    web3.eth.get_transaction_count.return_value = 3
    web3.eth.send_raw_transaction.return_value = TX_HASH
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "blockNumber": 1}
    account = MagicMock()
    account.address = SENDER

    with patch("multichain_deploy.deployer.client.get_deployed_contract", return_value=MagicMock()):
        adapter = Web3DeployAdapter(web3, ADAPTER, account=account)

    assert adapter.deploy(request_, [10], 10) == TX_HASH

    func = adapter.contract.functions.deploy.return_value
    func.transact.assert_not_called()
    assert func.build_transaction.call_args.args[0]["nonce"] == 3
    signed = account.sign_transaction.return_value
    web3.eth.send_raw_transaction.assert_called_once_with(signed.raw_transaction)


def test_web3_calculate_fee_as_sender(web3_adapter, request_):
    call = web3_adapter.contract.functions.calculateDeployFee.return_value.call
    call.return_value = [7]
    assert web3_adapter.calculate_deploy_fee(request_) == [7]
    call.assert_called_once_with({"from": SENDER})
