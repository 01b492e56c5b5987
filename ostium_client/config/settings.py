from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from ostium_client.errors import ConfigError

SIGNER_KINDS = ("local", "remote")
DEFAULT_ENV_FILE = "~/.ostium.env"
DEFAULT_PRICE_API = "https://metadata-backend.ostium.io/PricePublish/latest-prices"
DEFAULT_MPC_API = "https://api.fordefi.com"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = float(raw)
        except ValueError:
            raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    signer_kind: str
    private_key: str
    rpc_url: str
    chain_id: int
    mpc_api_base: str
    mpc_access_token: str
    mpc_private_key_pem: str
    mpc_address: str
    mpc_poll_interval: float
    mpc_sign_timeout: float
    receipt_timeout: float
    nonce_fetch_retries: int
    gas_limit_margin: float
    priority_fee_gwei: float
    vault_genesis_ts: int
    dry_run: bool
    data_dir: str
    log_level: str
    price_api_url: str

    def __repr__(self) -> str:
        # keys and tokens never end up in logs or tracebacks
        return (
            f"Settings(signer_kind={self.signer_kind!r}, chain_id={self.chain_id}, "
            f"dry_run={self.dry_run}, data_dir={self.data_dir!r}, log_level={self.log_level!r})"
        )

    def validate(self) -> "Settings":
        if self.signer_kind not in SIGNER_KINDS:
            raise ConfigError(f"unsupported OSTIUM_SIGNER={self.signer_kind!r}; use one of {SIGNER_KINDS}")
        if not self.rpc_url:
            raise ConfigError("RPC_URL or ALCHEMY_API_KEY must be set")
        if self.signer_kind == "local" and not self.private_key:
            raise ConfigError("PRIVATE_KEY must be set for the local signer")
        if self.signer_kind == "remote":
            if not self.mpc_access_token:
                raise ConfigError("MPC_ACCESS_TOKEN must be set for the remote signer")
            if not self.mpc_private_key_pem:
                raise ConfigError("MPC_PRIVATE_KEY_PEM or MPC_PRIVATE_KEY_PATH must be set for the remote signer")
        return self


def _rpc_url_from_env() -> str:
    url = _env_str("RPC_URL")
    if url:
        return url
    alchemy_key = _env_str("ALCHEMY_API_KEY")
    if alchemy_key:
        return f"https://arb-mainnet.g.alchemy.com/v2/{alchemy_key}"
    return ""


def _mpc_pem_from_env() -> str:
    pem = os.environ.get("MPC_PRIVATE_KEY_PEM", "")
    if pem.strip():
        return pem
    path = _env_str("MPC_PRIVATE_KEY_PATH")
    if not path:
        return ""
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigError(f"MPC_PRIVATE_KEY_PATH does not exist: {p}")
    return p.read_text()


def load_settings(env_file: str | None = None, *, validate: bool = True) -> Settings:
    load_dotenv(os.path.expanduser(env_file or os.environ.get("OSTIUM_ENV_FILE", DEFAULT_ENV_FILE)))
    settings = Settings(
        signer_kind=_env_str("OSTIUM_SIGNER", "local").lower(),
        private_key=_env_str("PRIVATE_KEY"),
        rpc_url=_rpc_url_from_env(),
        chain_id=_env_int("CHAIN_ID", 42161, min_value=1),
        mpc_api_base=_env_str("MPC_API_BASE", DEFAULT_MPC_API).rstrip("/"),
        mpc_access_token=_env_str("MPC_ACCESS_TOKEN"),
        mpc_private_key_pem=_mpc_pem_from_env(),
        mpc_address=_env_str("MPC_ADDRESS"),
        mpc_poll_interval=_env_float("MPC_POLL_INTERVAL", 2.0, min_value=0.1),
        mpc_sign_timeout=_env_float("MPC_SIGN_TIMEOUT", 180.0, min_value=1.0),
        receipt_timeout=_env_float("RECEIPT_TIMEOUT", 120.0, min_value=1.0),
        nonce_fetch_retries=_env_int("NONCE_FETCH_RETRIES", 2, min_value=0),
        gas_limit_margin=_env_float("GAS_LIMIT_MARGIN", 1.2, min_value=1.0),
        priority_fee_gwei=_env_float("PRIORITY_FEE_GWEI", 0.01, min_value=0.0),
        vault_genesis_ts=_env_int("VAULT_GENESIS_TS", 0, min_value=0),
        dry_run=_env_bool("DRY_RUN", False),
        data_dir=os.path.expanduser(_env_str("DATA_DIR", "~/.ostium")),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        price_api_url=_env_str("PRICE_API_URL", DEFAULT_PRICE_API),
    )
    return settings.validate() if validate else settings
