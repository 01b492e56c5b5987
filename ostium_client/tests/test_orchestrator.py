import asyncio
from pathlib import Path

import pytest
from web3 import Web3

from ostium_client.config.network import NetworkConfig
from ostium_client.domain import DepositParams, OperationKind, PlaceOrderParams, SigningRequest
from ostium_client.errors import (
    ChainRejectionError,
    ConfirmationTimeoutError,
    RpcUnreachableError,
    SigningTimeoutError,
    TransientNetworkError,
    ValidationError,
)
from ostium_client.execution import ExecutionOrchestrator, TransactionBuilder
from ostium_client.infra import RuntimeEventLogger
from ostium_client.signer import LocalSigner, RemoteMpcSigner

KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
NETWORK = NetworkConfig.mainnet("http://127.0.0.1:8545")


class FakeGateway:
    def __init__(self, *, nonce_failures=0, receipt_status=1, receipt_error=None, broadcast_error=None):
        self.nonce_failures = nonce_failures
        self.receipt_status = receipt_status
        self.receipt_error = receipt_error
        self.broadcast_error = broadcast_error
        self.calls = []
        self.broadcasts = []

    async def get_nonce(self, address):
        self.calls.append("nonce")
        if self.nonce_failures > 0:
            self.nonce_failures -= 1
            raise TransientNetworkError("get_nonce: rpc unreachable")
        return 11

    async def get_fee_params(self, priority_fee_wei):
        self.calls.append("fees")
        return 2 * 10_000_000 + priority_fee_wei, priority_fee_wei

    async def estimate_gas(self, tx):
        self.calls.append("estimate")
        return 100_000

    async def send_raw_transaction(self, raw):
        self.calls.append("send")
        self.broadcasts.append(raw)
        if self.broadcast_error is not None:
            raise self.broadcast_error
        return Web3.to_hex(Web3.keccak(raw))

    async def wait_for_receipt(self, tx_hash, timeout):
        self.calls.append("receipt")
        if self.receipt_error is not None:
            raise self.receipt_error
        return {"status": self.receipt_status, "blockNumber": 123, "gasUsed": 90_000}


class SigningMpcApi:
    """Signs submitted payloads with a local key, as the MPC service would."""

    def __init__(self, *, hang=False):
        self.hang = hang
        self.payload = None
        self._local = LocalSigner.from_private_key(KEY, 42161)

    async def create_transaction(self, payload):
        self.payload = payload
        return {"id": "mpc-7"}

    async def get_transaction(self, tx_id, *, timeout=None):
        if self.hang:
            await asyncio.sleep(3600)
        d = self.payload["details"]
        request = SigningRequest(
            operation=OperationKind.VAULT_DEPOSIT,
            to=d["to"],
            data=bytes.fromhex(d["data"]["hex_data"][2:]),
            value=int(d["value"]),
            chain_id=42161,
            nonce=int(d["custom_nonce"]),
            gas_limit=int(d["gas"]["gas_limit"]),
            max_fee_per_gas=int(d["gas"]["details"]["max_fee_per_gas"]),
            max_priority_fee_per_gas=int(d["gas"]["details"]["max_priority_fee_per_gas"]),
        )
        raw = self._local.sign_sync(request).raw_transaction
        return {"state": "signed", "raw_transaction": "0x" + raw.hex()}


def _orchestrator(gateway, signer=None, **kw) -> ExecutionOrchestrator:
    signer = signer or LocalSigner.from_private_key(KEY, 42161)
    return ExecutionOrchestrator(signer, TransactionBuilder(NETWORK), gateway, chain_id=42161, retry_delay=0, **kw)


def _remote(api) -> RemoteMpcSigner:
    address = LocalSigner.from_private_key(KEY, 42161).address()
    return RemoteMpcSigner(api, "v-1", address, 42161, poll_interval=0.01, timeout=5)


def test_execute_broadcasts_once_and_confirms(tmp_path: Path) -> None:
    gw = FakeGateway()
    events = RuntimeEventLogger(str(tmp_path))
    result = asyncio.run(_orchestrator(gw, events=events).execute(DepositParams(amount=10)))
    assert result.ok
    assert result.broadcast
    assert result.block_number == 123
    assert len(gw.broadcasts) == 1
    assert result.tx_hash == Web3.to_hex(Web3.keccak(gw.broadcasts[0]))
    assert gw.calls == ["nonce", "fees", "estimate", "send", "receipt"]
    assert [e["event"] for e in events.read()] == ["tx_signed", "tx_broadcast", "tx_confirmed"]


def test_gas_margin_applied() -> None:
    gw = FakeGateway()
    signer = LocalSigner.from_private_key(KEY, 42161)
    seen = []
    original = signer.sign

    async def spy(request):
        seen.append(request)
        return await original(request)

    signer.sign = spy
    asyncio.run(_orchestrator(gw, signer, gas_limit_margin=1.5).execute(DepositParams(amount=1)))
    assert seen[0].gas_limit == 150_000
    assert seen[0].nonce == 11
    assert seen[0].max_priority_fee_per_gas == 10_000_000


def test_transient_nonce_failure_retried_before_signing() -> None:
    gw = FakeGateway(nonce_failures=1)
    asyncio.run(_orchestrator(gw, nonce_fetch_retries=2).execute(DepositParams(amount=10)))
    assert gw.calls.count("nonce") == 2
    assert len(gw.broadcasts) == 1


def test_exhausted_pre_sign_retries_never_broadcast() -> None:
    gw = FakeGateway(nonce_failures=5)
    with pytest.raises(TransientNetworkError) as err:
        asyncio.run(_orchestrator(gw, nonce_fetch_retries=1).execute(DepositParams(amount=10)))
    assert err.value.retryable
    assert err.value.operation == "vault_deposit"
    assert gw.broadcasts == []


def test_validation_fails_before_network() -> None:
    gw = FakeGateway()
    with pytest.raises(ValidationError):
        asyncio.run(_orchestrator(gw).execute(PlaceOrderParams.market(0, collateral=10, leverage=0.5, is_long=True,
                                                                      open_price=1.0)))
    with pytest.raises(ValidationError):
        asyncio.run(_orchestrator(gw).execute({"amount": 1}))
    assert gw.calls == []


def test_revert_reports_hash() -> None:
    gw = FakeGateway(receipt_status=0)
    with pytest.raises(ChainRejectionError) as err:
        asyncio.run(_orchestrator(gw).execute(DepositParams(amount=10)))
    assert err.value.tx_hash == Web3.to_hex(Web3.keccak(gw.broadcasts[0]))
    assert len(gw.broadcasts) == 1


def test_broadcast_rejection_not_retried(tmp_path: Path) -> None:
    gw = FakeGateway(broadcast_error=ChainRejectionError("send_raw_transaction: nonce too low"))
    events = RuntimeEventLogger(str(tmp_path))
    with pytest.raises(ChainRejectionError) as err:
        asyncio.run(_orchestrator(gw, events=events).execute(DepositParams(amount=10)))
    assert len(gw.broadcasts) == 1
    assert err.value.tx_hash
    assert events.read()[-1]["stage"] == "broadcast"


def test_ambiguous_broadcast_failure_is_not_retryable(tmp_path: Path) -> None:
    gw = FakeGateway(broadcast_error=TransientNetworkError("send_raw_transaction: rpc transport failed (read timed out)"))
    events = RuntimeEventLogger(str(tmp_path))
    with pytest.raises(ConfirmationTimeoutError) as err:
        asyncio.run(_orchestrator(gw, events=events).execute(DepositParams(amount=10)))
    assert not err.value.retryable
    assert err.value.tx_hash == Web3.to_hex(Web3.keccak(gw.broadcasts[0]))
    assert len(gw.broadcasts) == 1
    assert events.read()[-1]["outcome"] == "unknown"
    assert events.unconfirmed() == [err.value.tx_hash.lower()]


def test_unreachable_rpc_at_broadcast_stays_retryable() -> None:
    gw = FakeGateway(broadcast_error=RpcUnreachableError("send_raw_transaction: rpc unreachable (connection refused)"))
    with pytest.raises(RpcUnreachableError) as err:
        asyncio.run(_orchestrator(gw).execute(DepositParams(amount=10)))
    assert err.value.retryable
    assert err.value.tx_hash


def test_confirmation_timeout_carries_hash() -> None:
    gw = FakeGateway(receipt_error=ConfirmationTimeoutError("no receipt after 120s"))
    with pytest.raises(ConfirmationTimeoutError) as err:
        asyncio.run(_orchestrator(gw).execute(DepositParams(amount=10)))
    assert err.value.tx_hash == Web3.to_hex(Web3.keccak(gw.broadcasts[0]))
    assert err.value.signer_kind == "local"
    assert len(gw.broadcasts) == 1


def test_dry_run_signs_without_broadcast(tmp_path: Path) -> None:
    gw = FakeGateway()
    events = RuntimeEventLogger(str(tmp_path))
    result = asyncio.run(_orchestrator(gw, dry_run=True, events=events).execute(DepositParams(amount=10)))
    assert not result.broadcast
    assert result.ok
    assert result.tx_hash.startswith("0x")
    assert "send" not in gw.calls
    assert events.read()[-1]["event"] == "tx_dry_run"


def test_signers_are_interchangeable() -> None:
    local_gw = FakeGateway()
    local = asyncio.run(_orchestrator(local_gw).execute(DepositParams(amount=42)))

    remote_gw = FakeGateway()
    remote = asyncio.run(_orchestrator(remote_gw, _remote(SigningMpcApi())).execute(DepositParams(amount=42)))

    assert local.tx_hash == remote.tx_hash
    assert local_gw.calls == remote_gw.calls
    assert local_gw.broadcasts == remote_gw.broadcasts
    assert remote.signer_kind == "remote-mpc"


def test_remote_signing_timeout_means_no_broadcast(tmp_path: Path) -> None:
    gw = FakeGateway()
    events = RuntimeEventLogger(str(tmp_path))
    signer = RemoteMpcSigner(
        SigningMpcApi(hang=True),
        "v-1",
        LocalSigner.from_private_key(KEY, 42161).address(),
        42161,
        poll_interval=0.01,
        timeout=0.3,
    )
    with pytest.raises(SigningTimeoutError) as err:
        asyncio.run(_orchestrator(gw, signer, events=events).execute(DepositParams(amount=10)))
    assert err.value.request_id == "mpc-7"
    assert err.value.operation == "vault_deposit"
    assert gw.broadcasts == []
    assert events.read()[-1]["event"] == "tx_failed"
