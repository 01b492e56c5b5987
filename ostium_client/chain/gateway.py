from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import requests
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted, Web3RPCError

from ostium_client.errors import (
    ChainRejectionError,
    ConfirmationTimeoutError,
    OstiumError,
    RpcUnreachableError,
    TransientNetworkError,
)

_REJECTION_MARKERS = (
    "revert",
    "insufficient funds",
    "nonce too low",
    "nonce too high",
    "already known",
    "replacement transaction underpriced",
    "intrinsic gas too low",
    "gas required exceeds",
    "exceeds block gas limit",
    "invalid sender",
)
_TRANSIENT_MARKERS = ("rate limit", "too many requests", "429", "timeout", "timed out", "unavailable")
_UNREACHABLE_MARKERS = (
    "connection refused",
    "newconnectionerror",
    "failed to resolve",
    "name or service not known",
    "nodename nor servname",
)


def _never_connected(exc: Exception) -> bool:
    if isinstance(exc, requests.exceptions.ConnectTimeout):
        return True
    if isinstance(exc, requests.exceptions.ConnectionError):
        text = str(exc).lower()
        return any(m in text for m in _UNREACHABLE_MARKERS)
    return False


def classify_rpc_error(exc: Exception, what: str, default: type[OstiumError] = TransientNetworkError) -> OstiumError:
    if isinstance(exc, OstiumError):
        return exc
    if _never_connected(exc):
        return RpcUnreachableError(f"{what}: rpc unreachable ({exc})")
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout, asyncio.TimeoutError)):
        return TransientNetworkError(f"{what}: rpc transport failed ({exc})")
    if isinstance(exc, requests.exceptions.HTTPError):
        status = getattr(getattr(exc, "response", None), "status_code", 0) or 0
        if status == 429 or status >= 500:
            return TransientNetworkError(f"{what}: rpc http {status}")
        return default(f"{what}: rpc http {status} ({exc})")
    if isinstance(exc, ContractLogicError):
        return ChainRejectionError(f"{what}: reverted ({exc})")
    if isinstance(exc, BadFunctionCallOutput):
        return ChainRejectionError(f"{what}: no return data ({exc})")
    if isinstance(exc, (Web3RPCError, ValueError)):
        text = str(exc).lower()
        if any(m in text for m in _REJECTION_MARKERS):
            return ChainRejectionError(f"{what}: {exc}")
        if any(m in text for m in _TRANSIENT_MARKERS):
            return TransientNetworkError(f"{what}: {exc}")
        return default(f"{what}: {exc}")
    return default(f"{what}: {type(exc).__name__}: {exc}")


class ChainGateway:
    """Blocking web3 calls pushed onto the loop executor, with typed failures."""

    def __init__(self, w3: Web3, *, log: logging.Logger | None = None):
        self.w3 = w3
        self.log = log or logging.getLogger("ostium.chain")

    @classmethod
    def connect(cls, rpc_url: str, *, timeout: float = 10.0, log: logging.Logger | None = None) -> "ChainGateway":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        return cls(w3, log=log)

    async def _run(self, fn: Callable[[], Any], *, what: str, default: type[OstiumError] = TransientNetworkError):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise classify_rpc_error(exc, what, default) from exc

    def contract(self, address: str, abi: list[dict]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def chain_id(self) -> int:
        return int(await self._run(lambda: self.w3.eth.chain_id, what="chain_id"))

    async def get_nonce(self, address: str) -> int:
        addr = Web3.to_checksum_address(address)
        return int(await self._run(lambda: self.w3.eth.get_transaction_count(addr, "pending"), what="get_nonce"))

    async def get_fee_params(self, priority_fee_wei: int) -> tuple[int, int]:
        """EIP-1559 caps: maxFee = 2 * baseFee + priority."""
        latest = await self._run(lambda: self.w3.eth.get_block("latest"), what="get_block")
        base_fee = int(latest["baseFeePerGas"])
        priority = int(priority_fee_wei)
        return base_fee * 2 + priority, priority

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return int(await self._run(lambda: self.w3.eth.estimate_gas(tx), what="estimate_gas", default=ChainRejectionError))

    async def get_balance(self, address: str) -> int:
        addr = Web3.to_checksum_address(address)
        return int(await self._run(lambda: self.w3.eth.get_balance(addr), what="get_balance"))

    async def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = await self._run(
            lambda: self.w3.eth.send_raw_transaction(raw),
            what="send_raw_transaction",
            default=ChainRejectionError,
        )
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        try:
            receipt = await loop.run_in_executor(
                None, lambda: self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=2)
            )
        except TimeExhausted as exc:
            raise ConfirmationTimeoutError(
                f"no receipt after {timeout:.0f}s; re-query before resubmitting", tx_hash=tx_hash
            ) from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            err = classify_rpc_error(exc, "wait_for_receipt")
            err.tx_hash = tx_hash
            raise err from exc
        return dict(receipt)

    async def call(self, fn, *, what: str = "eth_call"):
        """Run a bound contract function's ``call()``."""
        return await self._run(fn.call, what=what)
