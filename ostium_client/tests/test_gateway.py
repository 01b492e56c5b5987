import asyncio
from types import SimpleNamespace

import pytest
import requests
from web3.exceptions import ContractLogicError, TimeExhausted

from ostium_client.chain import ChainGateway, classify_rpc_error
from ostium_client.errors import (
    ChainRejectionError,
    ConfirmationTimeoutError,
    RpcUnreachableError,
    TransientNetworkError,
    ValidationError,
)


class FakeEth:
    def __init__(self, **overrides):
        self.overrides = overrides

    def get_block(self, ident):
        return {"baseFeePerGas": 10_000_000}

    def get_transaction_count(self, address, block):
        assert block == "pending"
        return 5

    def send_raw_transaction(self, raw):
        err = self.overrides.get("send_error")
        if err is not None:
            raise err
        return b"\xab" * 32

    def wait_for_transaction_receipt(self, tx_hash, timeout, poll_latency):
        raise TimeExhausted("not mined")


def _gateway(**overrides) -> ChainGateway:
    return ChainGateway(SimpleNamespace(eth=FakeEth(**overrides)))


def test_classification() -> None:
    assert isinstance(classify_rpc_error(requests.exceptions.ConnectionError("down"), "x"), TransientNetworkError)
    assert isinstance(classify_rpc_error(requests.exceptions.ReadTimeout("slow"), "x"), TransientNetworkError)
    assert isinstance(classify_rpc_error(ContractLogicError("execution reverted"), "x"), ChainRejectionError)
    assert isinstance(classify_rpc_error(ValueError({"message": "nonce too low"}), "x"), ChainRejectionError)
    assert isinstance(classify_rpc_error(ValueError("429 Too Many Requests"), "x"), TransientNetworkError)
    assert isinstance(classify_rpc_error(ValueError("weird"), "x", ChainRejectionError), ChainRejectionError)
    original = ValidationError("bad")
    assert classify_rpc_error(original, "x") is original


def test_fee_params_and_nonce() -> None:
    gw = _gateway()
    assert asyncio.run(gw.get_fee_params(1_000)) == (20_001_000, 1_000)
    assert asyncio.run(gw.get_nonce("0x" + "11" * 20)) == 5


def test_broadcast_errors_are_rejections() -> None:
    gw = _gateway(send_error=ValueError("insufficient funds for gas * price + value"))
    with pytest.raises(ChainRejectionError, match="insufficient funds"):
        asyncio.run(gw.send_raw_transaction(b"\x02"))
    assert asyncio.run(_gateway().send_raw_transaction(b"\x02")) == "0x" + "ab" * 32


def test_receipt_timeout_keeps_hash() -> None:
    with pytest.raises(ConfirmationTimeoutError) as err:
        asyncio.run(_gateway().wait_for_receipt("0xdead", 1))
    assert err.value.tx_hash == "0xdead"


def test_only_failed_connections_count_as_unreachable() -> None:
    refused = requests.exceptions.ConnectionError("HTTPConnectionPool: NewConnectionError: [Errno 111] Connection refused")
    assert isinstance(classify_rpc_error(refused, "x"), RpcUnreachableError)
    assert isinstance(classify_rpc_error(requests.exceptions.ConnectTimeout("connect"), "x"), RpcUnreachableError)
    read_timeout = classify_rpc_error(requests.exceptions.ReadTimeout("read timed out"), "send_raw_transaction",
                                      ChainRejectionError)
    assert isinstance(read_timeout, TransientNetworkError)
    assert not isinstance(read_timeout, RpcUnreachableError)
    reset = classify_rpc_error(requests.exceptions.ConnectionError("Connection aborted, reset by peer"), "x")
    assert not isinstance(reset, RpcUnreachableError)
