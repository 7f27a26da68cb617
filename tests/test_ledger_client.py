import asyncio

import pytest

from exchange.abis import ABIS, SWAP_EVENT_SIGNATURE
from exchange.ledger_client import LedgerClient, _checksum_args
from models.errors import LedgerRejected
from models.schemas import ContractCall
from tests.conftest import ETH, ROUTER

RPC = "http://127.0.0.1:8545"


def test_checksum_args_handles_nested_paths():
    args = _checksum_args([ETH, 5, [ETH, ROUTER], "not-an-address"])

    assert args[0] != ETH and args[0].lower() == ETH
    assert args[1] == 5
    assert [a.lower() for a in args[2]] == [ETH, ROUTER]
    assert args[3] == "not-an-address"


def test_client_without_key_has_no_signer():
    client = LedgerClient(RPC)
    assert client.signer_address is None

    call = ContractCall(address=ETH, contract="erc20", function_name="approve", args=[ROUTER, 1])
    with pytest.raises(LedgerRejected):
        asyncio.run(client.write_contract(call))


def test_client_with_key_exposes_signer_address():
    client = LedgerClient(RPC, private_key="0x" + "4c" * 32)
    address = client.signer_address

    assert address.startswith("0x")
    assert len(address) == 42


def test_abis_cover_every_contract_kind():
    assert set(ABIS) == {"erc20", "pair", "router", "factory"}
    names = {entry["name"] for entry in ABIS["router"]}
    assert {"addLiquidity", "removeLiquidity", "swapExactTokensForTokensSupportingFeeOnTransferTokens"} <= names
    assert SWAP_EVENT_SIGNATURE == "Swap(address,uint256,uint256,uint256,uint256,address)"
