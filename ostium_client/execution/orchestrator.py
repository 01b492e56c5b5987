from __future__ import annotations

import asyncio
import logging
from typing import Any

from web3 import Web3

from ostium_client.domain import ExecutionResult, OperationKind, Signature, SigningRequest, TxPayload
from ostium_client.errors import (
    ChainRejectionError,
    ConfirmationTimeoutError,
    OstiumError,
    RpcUnreachableError,
    SignerError,
    TransientNetworkError,
    ValidationError,
)
from ostium_client.execution.builder import TransactionBuilder
from ostium_client.infra.telemetry import RuntimeEventLogger
from ostium_client.signer.base import Signer


class ExecutionOrchestrator:
    """Build -> sign -> broadcast -> confirm, for exactly one transaction per call.

    Nonce and fees are fetched fresh on every call. Two concurrent calls for the
    same signer can race on the nonce; serialize them above this layer.
    Only the pre-signature reads are retried; nothing after signing ever is.
    """

    def __init__(
        self,
        signer: Signer,
        builder: TransactionBuilder,
        gateway,
        *,
        chain_id: int,
        receipt_timeout: float = 120.0,
        nonce_fetch_retries: int = 2,
        retry_delay: float = 0.5,
        gas_limit_margin: float = 1.2,
        priority_fee_wei: int = 10_000_000,
        dry_run: bool = False,
        events: RuntimeEventLogger | None = None,
        log: logging.Logger | None = None,
    ):
        self.signer = signer
        self.builder = builder
        self.gateway = gateway
        self.chain_id = int(chain_id)
        self.receipt_timeout = float(receipt_timeout)
        self.nonce_fetch_retries = max(0, int(nonce_fetch_retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.gas_limit_margin = max(1.0, float(gas_limit_margin))
        self.priority_fee_wei = int(priority_fee_wei)
        self.dry_run = dry_run
        self.events = events
        self.log = log or logging.getLogger("ostium.execution")

    def _emit(self, event: str, **fields: Any) -> None:
        if self.events is not None:
            self.events.emit(event, signer=self.signer.kind, **fields)

    async def _prepare(self, payload: TxPayload, sender: str) -> SigningRequest:
        op = payload.operation.value
        attempts = self.nonce_fetch_retries + 1
        for i in range(attempts):
            try:
                nonce = await self.gateway.get_nonce(sender)
                max_fee, priority = await self.gateway.get_fee_params(self.priority_fee_wei)
                gas_limit = payload.gas_limit
                if gas_limit is None:
                    estimate = await self.gateway.estimate_gas(
                        {"from": sender, "to": payload.to, "data": "0x" + payload.data.hex(), "value": payload.value}
                    )
                    gas_limit = int(estimate * self.gas_limit_margin)
                break
            except TransientNetworkError as exc:
                exc.with_context(operation=op, signer_kind=self.signer.kind)
                if i >= attempts - 1:
                    raise
                self.log.warning("pre-sign read failed op=%s attempt=%s/%s: %s", op, i + 1, attempts, exc)
                await asyncio.sleep(self.retry_delay * (i + 1))
            except OstiumError as exc:
                raise exc.with_context(operation=op, signer_kind=self.signer.kind)

        return SigningRequest(
            operation=payload.operation,
            to=payload.to,
            data=payload.data,
            value=payload.value,
            chain_id=self.chain_id,
            nonce=nonce,
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority,
            sender=sender,
        )

    async def _sign(self, request: SigningRequest) -> Signature:
        op = request.operation.value
        try:
            return await self.signer.sign(request)
        except OstiumError as exc:
            raise exc.with_context(operation=op, signer_kind=self.signer.kind)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise SignerError(f"signer failed: {type(exc).__name__}: {exc}", operation=op,
                              signer_kind=self.signer.kind) from exc

    async def execute(self, params) -> ExecutionResult:
        kind = getattr(params, "kind", None)
        if not isinstance(kind, OperationKind):
            raise ValidationError(f"not an operation: {type(params).__name__}")
        op = kind.value
        sender = self.signer.address()

        payload = self.builder.build(params, sender)
        request = await self._prepare(payload, sender)

        try:
            signature = await self._sign(request)
        except OstiumError as exc:
            self._emit("tx_failed", op=op, stage="sign", error=type(exc).__name__, detail=str(exc))
            raise
        tx_hash = signature.tx_hash
        self._emit("tx_signed", op=op, tx_hash=tx_hash, nonce=request.nonce, request_id=signature.request_id)

        if self.dry_run:
            self.log.info("dry run op=%s nonce=%s hash=%s (not broadcast)", op, request.nonce, tx_hash)
            self._emit("tx_dry_run", op=op, tx_hash=tx_hash)
            return ExecutionResult(operation=kind, tx_hash=tx_hash, signer_kind=self.signer.kind, broadcast=False)

        try:
            sent_hash = await self.gateway.send_raw_transaction(signature.raw_transaction)
        except OstiumError as exc:
            if isinstance(exc, TransientNetworkError) and not isinstance(exc, RpcUnreachableError):
                # the node may hold it already; a retry would take a fresh nonce
                self.log.warning("broadcast outcome unknown op=%s tx=%s: %s", op, tx_hash, exc.message)
                err = ConfirmationTimeoutError(
                    f"broadcast outcome unknown ({exc.message}); re-query before resubmitting",
                    operation=op,
                    signer_kind=self.signer.kind,
                    tx_hash=tx_hash,
                )
                self._emit("tx_failed", op=op, stage="broadcast", outcome="unknown", tx_hash=tx_hash,
                           error=type(err).__name__, detail=exc.message)
                raise err from exc
            exc.tx_hash = exc.tx_hash or tx_hash
            exc.with_context(operation=op, signer_kind=self.signer.kind)
            self._emit("tx_failed", op=op, stage="broadcast", tx_hash=tx_hash, error=type(exc).__name__, detail=str(exc))
            raise
        if sent_hash and sent_hash.lower() != tx_hash.lower():
            self.log.warning("rpc returned hash %s, signature hash %s; using rpc hash", sent_hash, tx_hash)
            tx_hash = Web3.to_hex(hexstr=sent_hash)
        self.log.info("broadcast op=%s signer=%s nonce=%s tx=%s", op, self.signer.kind, request.nonce, tx_hash)
        self._emit("tx_broadcast", op=op, tx_hash=tx_hash, nonce=request.nonce)

        try:
            receipt = await self.gateway.wait_for_receipt(tx_hash, self.receipt_timeout)
        except OstiumError as exc:
            exc.tx_hash = exc.tx_hash or tx_hash
            exc.with_context(operation=op, signer_kind=self.signer.kind)
            self._emit("tx_failed", op=op, stage="confirm", tx_hash=tx_hash, error=type(exc).__name__, detail=str(exc))
            raise

        status = int(receipt.get("status", 0))
        result = ExecutionResult(
            operation=kind,
            tx_hash=tx_hash,
            signer_kind=self.signer.kind,
            status=status,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
        if status != 1:
            self._emit("tx_failed", op=op, stage="receipt", tx_hash=tx_hash, error="ChainRejectionError",
                       block=result.block_number)
            raise ChainRejectionError(
                f"transaction reverted in block {result.block_number}",
                operation=op,
                signer_kind=self.signer.kind,
                tx_hash=tx_hash,
            )
        self.log.info("confirmed op=%s tx=%s block=%s gas=%s", op, tx_hash, result.block_number, result.gas_used)
        self._emit("tx_confirmed", op=op, tx_hash=tx_hash, block=result.block_number, gas_used=result.gas_used)
        return result
