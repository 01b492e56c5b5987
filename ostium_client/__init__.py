from .client import OstiumClient, build_client, build_signer
from .config import NetworkConfig, Settings, VaultSchedule, load_settings
from .errors import (
    ChainRejectionError,
    ConfigError,
    ConfirmationTimeoutError,
    EligibilityError,
    OstiumError,
    SignerError,
    SigningTimeoutError,
    RpcUnreachableError,
    TransientNetworkError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "OstiumClient",
    "build_client",
    "build_signer",
    "NetworkConfig",
    "Settings",
    "VaultSchedule",
    "load_settings",
    "ChainRejectionError",
    "ConfigError",
    "ConfirmationTimeoutError",
    "EligibilityError",
    "OstiumError",
    "SignerError",
    "SigningTimeoutError",
    "RpcUnreachableError",
    "TransientNetworkError",
    "ValidationError",
]
