from __future__ import annotations

from typing import Any


class OstiumError(RuntimeError):
    """Base failure. Carries enough context to choose between re-query and resubmit."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        signer_kind: str = "",
        tx_hash: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.signer_kind = signer_kind
        self.tx_hash = tx_hash

    def with_context(self, *, operation: str = "", signer_kind: str = "") -> "OstiumError":
        if operation and not self.operation:
            self.operation = operation
        if signer_kind and not self.signer_kind:
            self.signer_kind = signer_kind
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"op={self.operation}")
        if self.signer_kind:
            parts.append(f"signer={self.signer_kind}")
        if self.tx_hash:
            parts.append(f"tx={self.tx_hash}")
        return " ".join(parts)


class ConfigError(OstiumError):
    pass


class ValidationError(OstiumError):
    """Bad caller input. Raised before any network call."""


class TransientNetworkError(OstiumError):
    """RPC or signing service unreachable / rate limited. Caller may retry with backoff."""

    retryable = True


class RpcUnreachableError(TransientNetworkError):
    """No connection was made, so nothing reached the node."""


class SignerError(OstiumError):
    """Key or credential problem, or the remote service rejected the request."""


class SigningTimeoutError(SignerError):
    """Gave up waiting on the remote service. The request may still be signed out-of-band."""

    def __init__(self, message: str, *, request_id: str = "", timeout: float = 0.0, **kw: Any):
        super().__init__(message, **kw)
        self.request_id = request_id
        self.timeout = timeout


class ChainRejectionError(OstiumError):
    """Revert, insufficient funds or nonce conflict. Not retried."""


class ConfirmationTimeoutError(OstiumError):
    """Broadcast went out but no receipt arrived in time. Re-query by hash, never resubmit."""


class EligibilityError(OstiumError):
    """Vault withdrawal attempted outside its current window."""

    def __init__(self, message: str, *, eligibility: Any = None, **kw: Any):
        super().__init__(message, **kw)
        self.eligibility = eligibility
