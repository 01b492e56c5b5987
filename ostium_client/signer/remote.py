"""Remote MPC signer.

Discovery runs once and caches the wallet; each ``sign`` submits the unsigned
transaction and polls the service until it reports a signed raw transaction,
an error, or the caller's deadline passes. A timeout only abandons this
client's wait: the service may still sign (and someone may still push) later.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from web3 import Web3

from ostium_client.domain import Signature, SigningRequest
from ostium_client.errors import SignerError, SigningTimeoutError, TransientNetworkError
from ostium_client.signer.base import REMOTE_MPC
from ostium_client.signer.mpc_api import MpcApiClient

MPC_CHAIN_NAMES = {
    42161: "arbitrum_mainnet",
    421614: "arbitrum_sepolia",
}

SIGNED_STATES = {"signed", "pushed_to_blockchain", "mined", "completed"}
ERROR_STATES = {"error_signing", "error_pushing_to_blockchain", "aborted", "cancelled", "rejected"}


class SigningPhase(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SIGNED = "signed"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"


_TRANSITIONS = {
    SigningPhase.SUBMITTED: {SigningPhase.POLLING, SigningPhase.ERRORED, SigningPhase.TIMED_OUT},
    SigningPhase.POLLING: {SigningPhase.POLLING, SigningPhase.SIGNED, SigningPhase.ERRORED, SigningPhase.TIMED_OUT},
}


@dataclass
class SigningSession:
    request_id: str
    phase: SigningPhase = SigningPhase.SUBMITTED
    started: float = field(default_factory=time.monotonic)
    polls: int = 0
    last_state: str = ""

    @property
    def done(self) -> bool:
        return self.phase in (SigningPhase.SIGNED, SigningPhase.ERRORED, SigningPhase.TIMED_OUT)

    def advance(self, phase: SigningPhase) -> None:
        if phase not in _TRANSITIONS.get(self.phase, ()):
            raise RuntimeError(f"illegal signing transition {self.phase.value} -> {phase.value}")
        self.phase = phase


def _decode_raw(value: str) -> bytes:
    value = value.strip()
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


class RemoteMpcSigner:
    kind = REMOTE_MPC

    def __init__(
        self,
        api: MpcApiClient,
        vault_id: str,
        address: str,
        chain_id: int,
        *,
        poll_interval: float = 2.0,
        timeout: float = 180.0,
        log: logging.Logger | None = None,
    ):
        if int(chain_id) not in MPC_CHAIN_NAMES:
            raise SignerError(f"chain id {chain_id} has no MPC chain name", signer_kind=REMOTE_MPC)
        self.api = api
        self.vault_id = vault_id
        self._address = Web3.to_checksum_address(address)
        self.chain_id = int(chain_id)
        self.poll_interval = float(poll_interval)
        self.timeout = float(timeout)
        self.log = log or logging.getLogger("ostium.signer.remote")
        self.last_session: SigningSession | None = None

    @classmethod
    async def discover(
        cls,
        api: MpcApiClient,
        chain_id: int,
        *,
        address: str | None = None,
        **kw,
    ) -> "RemoteMpcSigner":
        """Resolve the wallet this token controls; pin it with ``address`` when several exist."""
        vaults = await api.list_evm_vaults(search=address)
        wanted = address.lower() if address else None
        for vault in vaults:
            vault_addr = vault.get("address")
            if not vault_addr or not vault.get("id"):
                continue
            if wanted is None or vault_addr.lower() == wanted:
                signer = cls(api, str(vault["id"]), vault_addr, chain_id, **kw)
                signer.log.info("discovered mpc vault id=%s address=%s", signer.vault_id, signer.address())
                return signer
        if wanted:
            raise SignerError(f"no MPC vault found for address {address}", signer_kind=REMOTE_MPC)
        raise SignerError("no EVM vault found in MPC account", signer_kind=REMOTE_MPC)

    def __repr__(self) -> str:
        return f"RemoteMpcSigner(address={self._address}, vault_id={self.vault_id!r})"

    def address(self) -> str:
        return self._address

    def build_payload(self, request: SigningRequest) -> dict:
        return {
            "type": "evm_transaction",
            "vault_id": self.vault_id,
            "signer_type": "api_signer",
            "details": {
                "type": "evm_raw_transaction",
                "chain": MPC_CHAIN_NAMES[self.chain_id],
                "to": Web3.to_checksum_address(request.to),
                "value": str(int(request.value)),
                "data": {"type": "hex", "hex_data": "0x" + request.data.hex()},
                "gas": {
                    "type": "custom",
                    "gas_limit": str(int(request.gas_limit)),
                    "details": {
                        "type": "dynamic",
                        "max_fee_per_gas": str(int(request.max_fee_per_gas)),
                        "max_priority_fee_per_gas": str(int(request.max_priority_fee_per_gas)),
                    },
                },
                "custom_nonce": str(int(request.nonce)),
                "push_mode": "manual",
                "skip_prediction": True,
            },
        }

    async def sign(self, request: SigningRequest, *, timeout: float | None = None) -> Signature:
        op = request.operation.value
        if request.chain_id != self.chain_id:
            raise SignerError(
                f"chain id mismatch: request={request.chain_id} signer={self.chain_id}",
                operation=op,
                signer_kind=REMOTE_MPC,
            )
        limit = self.timeout if timeout is None else float(timeout)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit

        try:
            created = await asyncio.wait_for(self.api.create_transaction(self.build_payload(request)), timeout=limit)
        except asyncio.TimeoutError:
            raise SigningTimeoutError(
                f"mpc submit did not answer within {limit:.1f}s", timeout=limit, operation=op, signer_kind=REMOTE_MPC
            ) from None
        except (SignerError, TransientNetworkError) as exc:
            raise exc.with_context(operation=op, signer_kind=REMOTE_MPC)

        request_id = str(created.get("id") or "")
        if not request_id:
            raise SignerError("mpc submit returned no request id", operation=op, signer_kind=REMOTE_MPC)
        session = SigningSession(request_id=request_id)
        self.last_session = session
        self.log.info("mpc request submitted op=%s id=%s nonce=%s", op, request_id, request.nonce)
        return await self._poll(session, deadline, limit, op)

    async def _poll(self, session: SigningSession, deadline: float, limit: float, op: str) -> Signature:
        loop = asyncio.get_running_loop()
        session.advance(SigningPhase.POLLING)
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._timed_out(session, limit, op)
            try:
                status = await asyncio.wait_for(
                    self.api.get_transaction(session.request_id, timeout=remaining), timeout=remaining
                )
            except asyncio.TimeoutError:
                return self._timed_out(session, limit, op)
            except TransientNetworkError as exc:
                # polling is a read; keep waiting until the deadline
                self.log.warning("mpc poll failed id=%s: %s", session.request_id, exc)
                status = None
            except SignerError as exc:
                session.advance(SigningPhase.ERRORED)
                raise exc.with_context(operation=op, signer_kind=REMOTE_MPC)

            if status is not None:
                session.polls += 1
                state = str(status.get("state", "") or "").lower()
                session.last_state = state
                self.log.debug("mpc poll id=%s state=%s attempt=%s", session.request_id, state, session.polls)
                if state in ERROR_STATES:
                    session.advance(SigningPhase.ERRORED)
                    raise SignerError(
                        f"mpc request {session.request_id} ended in {state}", operation=op, signer_kind=REMOTE_MPC
                    )
                raw = status.get("raw_transaction") or status.get("signed_transaction")
                if state in SIGNED_STATES and raw:
                    session.advance(SigningPhase.SIGNED)
                    return self._signature(session, raw, op)
                session.advance(SigningPhase.POLLING)

            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._timed_out(session, limit, op)
            await asyncio.sleep(min(self.poll_interval, remaining))

    def _signature(self, session: SigningSession, raw_hex: str, op: str) -> Signature:
        try:
            raw = _decode_raw(str(raw_hex))
        except ValueError as exc:
            raise SignerError(
                f"mpc request {session.request_id} returned malformed raw transaction",
                operation=op,
                signer_kind=REMOTE_MPC,
            ) from exc
        tx_hash = Web3.to_hex(Web3.keccak(raw))
        self.log.info("mpc request signed id=%s hash=%s polls=%s", session.request_id, tx_hash, session.polls)
        return Signature(raw_transaction=raw, tx_hash=tx_hash, signer_kind=REMOTE_MPC, request_id=session.request_id)

    def _timed_out(self, session: SigningSession, limit: float, op: str):
        session.advance(SigningPhase.TIMED_OUT)
        self.log.warning(
            "mpc request %s still %s after %.1fs; giving up the wait (remote may still sign)",
            session.request_id,
            session.last_state or "unanswered",
            limit,
        )
        raise SigningTimeoutError(
            f"mpc request {session.request_id} not signed within {limit:.1f}s",
            request_id=session.request_id,
            timeout=limit,
            operation=op,
            signer_kind=REMOTE_MPC,
        )
