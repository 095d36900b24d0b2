"""Typed ABI schema and artifact loading."""

import json

import pytest
from eth_abi import decode
from web3 import Web3

from multichain_deploy.abi import (
    AbiKind,
    ArgumentTypeError,
    ArtifactNotFound,
    ConstructorArgumentMismatch,
    InitMethodNotFound,
    decode_constructor_args,
    encode_constructor_args,
    encode_init_data,
    get_abi_by_filename,
    parse_contract_abi,
    read_artifact,
)
from multichain_deploy.testing import GREETER_ABI

TOKEN_ABI = [
    {
        "type": "constructor",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "supply", "type": "uint256"},
            {
                "name": "config",
                "type": "tuple",
                "components": [
                    {"name": "paused", "type": "bool"},
                    {"name": "tag", "type": "bytes32"},
                ],
            },
        ],
    },
    {"type": "function", "name": "mint", "inputs": [{"name": "amount", "type": "uint256"}]},
    {"type": "function", "name": "mint", "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}]},
    {"type": "event", "name": "Transfer", "inputs": []},
    {"type": "receive", "stateMutability": "payable"},
]

OWNER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"


def test_bundled_adapter_abi():
    abi = get_abi_by_filename("CrosschainDeployAdapter.json")
    names = {entry.get("name") for entry in abi["abi"]}
    assert {"deploy", "calculateDeployFee", "computeContractAddress", "fortify"} <= names


def test_parse_kinds():
    """Tuples flatten to their canonical form, events and receive are skipped."""
    interface = parse_contract_abi(TOKEN_ABI)

    assert interface.has_constructor
    kinds = [p.kind for p in interface.constructor_inputs]
    assert kinds == [AbiKind.address, AbiKind.uint, AbiKind.tuple]
    assert interface.constructor_inputs[2].type == "(bool,bytes32)"
    assert set(interface.functions) == {"mint"}
    assert len(interface.functions["mint"]) == 2


def test_encode_constructor_args_converts_values():
    """Numeric strings, dict tuples and short hex are accepted."""
    interface = parse_contract_abi(TOKEN_ABI)
    data = encode_constructor_args(interface, [OWNER, "1000", {"paused": True, "tag": "0x01"}])

    owner, supply, (paused, tag) = decode(["address", "uint256", "(bool,bytes32)"], data)
    assert owner.lower() == OWNER
    assert supply == 1000
    assert paused is True
    assert tag == b"\x01" + bytes(31)
    assert decode_constructor_args(interface, data)[1] == 1000


@pytest.mark.parametrize(
    "args",
    [
        ["0x1234", 1, [False, "0x00"]],
        [OWNER, -1, [False, "0x00"]],
        [OWNER, 1, [1, "0x00"]],
        [OWNER, 1, {"paused": False}],
        [OWNER, True, [False, "0x00"]],
    ],
)
def test_encode_constructor_args_rejects_bad_types(args):
    interface = parse_contract_abi(TOKEN_ABI)
    with pytest.raises(ArgumentTypeError):
        encode_constructor_args(interface, args)


def test_constructor_argument_count_mismatch():
    interface = parse_contract_abi(TOKEN_ABI)
    with pytest.raises(ConstructorArgumentMismatch, match="takes 3 arguments"):
        encode_constructor_args(interface, [OWNER])


def test_no_constructor():
    """A contract without constructor inputs takes no arguments."""
    interface = parse_contract_abi([{"type": "function", "name": "ping", "inputs": []}])
    assert encode_constructor_args(interface, []) == b""
    with pytest.raises(ConstructorArgumentMismatch):
        encode_constructor_args(interface, [1])


def test_encode_init_data():
    """Init data is the function selector and the encoded arguments."""
    interface = parse_contract_abi(GREETER_ABI)
    data = encode_init_data(interface, "setName", ["Pepe"])
    assert data[0:4] == bytes(Web3.keccak(text="setName(string)")[0:4])
    assert decode(["string"], data[4:]) == ("Pepe",)


def test_encode_init_data_picks_overload():
    interface = parse_contract_abi(TOKEN_ABI)
    data = encode_init_data(interface, "mint", [OWNER, 5])
    assert data[0:4] == bytes(Web3.keccak(text="mint(address,uint256)")[0:4])


def test_init_method_not_found():
    interface = parse_contract_abi(GREETER_ABI)
    with pytest.raises(InitMethodNotFound, match="setAge"):
        encode_init_data(interface, "setAge", [1])
    with pytest.raises(InitMethodNotFound):
        encode_init_data(interface, "setName", ["a", "b"])


def test_read_hardhat_artifact(tmp_path):
    path = tmp_path / "contracts" / "Greeter.sol"
    path.mkdir(parents=True)
    (path / "Greeter.json").write_text(json.dumps({"abi": GREETER_ABI, "bytecode": "0x6080"}))
    (path / "Greeter.dbg.json").write_text("{}")

    artifact = read_artifact(tmp_path, "Greeter")
    assert artifact["bytecode"] == "0x6080"
    assert artifact["abi"] == GREETER_ABI


def test_read_forge_artifact(tmp_path):
    path = tmp_path / "Greeter.sol"
    path.mkdir()
    (path / "Greeter.json").write_text(json.dumps({"abi": GREETER_ABI, "bytecode": {"object": "0x6080", "sourceMap": ""}}))
    assert read_artifact(tmp_path, "Greeter")["bytecode"] == "0x6080"


def test_read_artifact_errors(tmp_path):
    with pytest.raises(ArtifactNotFound, match="No artifact"):
        read_artifact(tmp_path, "Greeter")

    (tmp_path / "IGreeter.json").write_text(json.dumps({"abi": [], "bytecode": "0x"}))
    with pytest.raises(ArtifactNotFound, match="no bytecode"):
        read_artifact(tmp_path, "IGreeter")

    for folder in ("a", "b"):
        (tmp_path / folder).mkdir()
        (tmp_path / folder / "Token.json").write_text(json.dumps({"abi": [], "bytecode": "0x60"}))
    with pytest.raises(ArtifactNotFound, match="Several"):
        read_artifact(tmp_path, "Token")
