from .base import LOCAL, REMOTE_MPC, Signer
from .local import LocalSigner
from .mpc_api import MpcApiClient, load_api_signing_key, normalize_pem
from .remote import RemoteMpcSigner, SigningPhase, SigningSession

__all__ = [
    "LOCAL",
    "REMOTE_MPC",
    "Signer",
    "LocalSigner",
    "MpcApiClient",
    "load_api_signing_key",
    "normalize_pem",
    "RemoteMpcSigner",
    "SigningPhase",
    "SigningSession",
]
