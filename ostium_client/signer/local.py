from __future__ import annotations

import logging

from eth_account import Account
from web3 import Web3

from ostium_client.domain import Signature, SigningRequest
from ostium_client.errors import SignerError
from ostium_client.signer.base import LOCAL


class LocalSigner:
    """In-process key. Signing never suspends on I/O."""

    kind = LOCAL

    def __init__(self, account, chain_id: int, *, log: logging.Logger | None = None):
        self._account = account
        self.chain_id = int(chain_id)
        self.log = log or logging.getLogger("ostium.signer.local")

    @classmethod
    def from_private_key(cls, private_key: str, chain_id: int, *, log: logging.Logger | None = None) -> "LocalSigner":
        key = (private_key or "").strip()
        if not key:
            raise SignerError("private key is empty", signer_kind=LOCAL)
        if not key.startswith("0x"):
            key = "0x" + key
        try:
            account = Account.from_key(key)
        except Exception as exc:
            raise SignerError(f"failed to parse private key: {type(exc).__name__}", signer_kind=LOCAL) from None
        return cls(account, chain_id, log=log)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address()}, chain_id={self.chain_id})"

    def address(self) -> str:
        return self._account.address

    async def sign(self, request: SigningRequest) -> Signature:
        return self.sign_sync(request)

    def sign_sync(self, request: SigningRequest) -> Signature:
        op = request.operation.value
        if request.chain_id != self.chain_id:
            raise SignerError(
                f"chain id mismatch: request={request.chain_id} signer={self.chain_id}",
                operation=op,
                signer_kind=LOCAL,
            )
        if request.sender and request.sender.lower() != self.address().lower():
            raise SignerError(f"request sender {request.sender} is not this signer", operation=op, signer_kind=LOCAL)
        if not Web3.is_address(request.to) or request.gas_limit <= 0 or request.nonce < 0:
            raise SignerError("malformed signing request", operation=op, signer_kind=LOCAL)
        try:
            signed = self._account.sign_transaction(request.to_tx_dict())
        except Exception as exc:
            raise SignerError(f"sign failed: {exc}", operation=op, signer_kind=LOCAL) from exc
        tx_hash = Web3.to_hex(signed.hash)
        self.log.debug("signed op=%s nonce=%s hash=%s", op, request.nonce, tx_hash)
        return Signature(
            raw_transaction=bytes(signed.raw_transaction),
            tx_hash=tx_hash,
            signer_kind=LOCAL,
            r=int(signed.r),
            s=int(signed.s),
            v=int(signed.v),
        )
