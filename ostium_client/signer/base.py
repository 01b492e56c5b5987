from __future__ import annotations

from typing import Protocol, runtime_checkable

from ostium_client.domain import Signature, SigningRequest

LOCAL = "local"
REMOTE_MPC = "remote-mpc"


@runtime_checkable
class Signer(Protocol):
    """What the orchestrator needs from a signing backend, and nothing more."""

    kind: str

    def address(self) -> str: ...

    async def sign(self, request: SigningRequest) -> Signature: ...
