import asyncio

import pytest
from eth_account import Account
from web3 import Web3

from ostium_client.domain import OperationKind, SigningRequest
from ostium_client.errors import SignerError
from ostium_client.signer import LOCAL, LocalSigner, Signer

KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TO = Web3.to_checksum_address("0x" + "33" * 20)


def _request(**kw) -> SigningRequest:
    base = dict(
        operation=OperationKind.VAULT_DEPOSIT,
        to=TO,
        data=bytes.fromhex("6e553f65") + bytes(64),
        value=0,
        chain_id=42161,
        nonce=7,
        gas_limit=250_000,
        max_fee_per_gas=200_000_000,
        max_priority_fee_per_gas=10_000_000,
    )
    base.update(kw)
    return SigningRequest(**base)


def test_local_signer_signs_recoverable_tx() -> None:
    signer = LocalSigner.from_private_key(KEY[2:], 42161)
    assert isinstance(signer, Signer)
    assert signer.kind == LOCAL
    assert signer.address() == Account.from_key(KEY).address

    sig = asyncio.run(signer.sign(_request(sender=signer.address())))
    assert Account.recover_transaction(sig.raw_transaction) == signer.address()
    assert sig.tx_hash == Web3.to_hex(Web3.keccak(sig.raw_transaction))
    assert sig.signer_kind == LOCAL
    assert sig.r and sig.s


def test_local_signer_is_deterministic() -> None:
    signer = LocalSigner.from_private_key(KEY, 42161)
    a = signer.sign_sync(_request())
    b = signer.sign_sync(_request())
    assert a.raw_transaction == b.raw_transaction


def test_local_signer_rejects_malformed_requests() -> None:
    signer = LocalSigner.from_private_key(KEY, 42161)
    with pytest.raises(SignerError) as err:
        signer.sign_sync(_request(chain_id=1))
    assert err.value.signer_kind == LOCAL
    assert err.value.operation == "vault_deposit"
    with pytest.raises(SignerError):
        signer.sign_sync(_request(sender=TO))
    with pytest.raises(SignerError):
        signer.sign_sync(_request(gas_limit=0))


def test_bad_private_key() -> None:
    with pytest.raises(SignerError):
        LocalSigner.from_private_key("", 42161)
    with pytest.raises(SignerError) as err:
        LocalSigner.from_private_key("0xnotakey", 42161)
    assert "notakey" not in str(err.value)
