from __future__ import annotations

from dataclasses import dataclass, replace

from web3 import Web3

from ostium_client.errors import ConfigError

ARBITRUM_ONE = 42161

SUBGRAPH_URL = "https://subgraph.satsuma-prod.com/391a61815d32/ostium/ost-prod/api"
USDC = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
TRADING = "0x6D0bA1f9996DBD8885827e1b2e8f6593e7702411"
TRADING_STORAGE = "0xcCd5891083A8acD2074690F65d3024E7D13d66E7"
OLP_VAULT = "0x20d419a8e12c45f88fda7c5760bb6923cee27f98"

EPOCH_DURATION = 3 * 24 * 3600
REQUEST_WINDOW = 48 * 3600
REDEMPTION_WINDOW = 48 * 3600


@dataclass(frozen=True)
class NetworkConfig:
    """Protocol addresses. Immutable once built at startup."""

    chain_id: int
    rpc_url: str
    usdc: str
    trading: str
    trading_storage: str
    vault: str
    auto_withdraw_spender: str
    subgraph_url: str = SUBGRAPH_URL

    @classmethod
    def mainnet(cls, rpc_url: str) -> "NetworkConfig":
        vault = Web3.to_checksum_address(OLP_VAULT)
        return cls(
            chain_id=ARBITRUM_ONE,
            rpc_url=rpc_url,
            usdc=Web3.to_checksum_address(USDC),
            trading=Web3.to_checksum_address(TRADING),
            trading_storage=Web3.to_checksum_address(TRADING_STORAGE),
            vault=vault,
            auto_withdraw_spender=vault,
        )

    def with_rpc_url(self, rpc_url: str) -> "NetworkConfig":
        return replace(self, rpc_url=rpc_url)

    def with_vault(self, vault: str) -> "NetworkConfig":
        vault = Web3.to_checksum_address(vault)
        return replace(self, vault=vault, auto_withdraw_spender=vault)


@dataclass(frozen=True)
class VaultSchedule:
    """Epoch constants shared by every eligibility computation."""

    genesis_ts: int
    epoch_duration: int = EPOCH_DURATION
    request_window: int = REQUEST_WINDOW
    redemption_window: int = REDEMPTION_WINDOW

    def __post_init__(self):
        if self.epoch_duration <= 0:
            raise ConfigError("epoch_duration must be positive")
        if not 0 < self.request_window <= self.epoch_duration:
            raise ConfigError("request_window must fit inside one epoch")
        if self.redemption_window <= 0:
            raise ConfigError("redemption_window must be positive")

    @classmethod
    def from_chain(
        cls,
        current_epoch: int,
        current_epoch_start: int,
        epoch_duration: int = EPOCH_DURATION,
    ) -> "VaultSchedule":
        genesis = int(current_epoch_start) - int(current_epoch) * int(epoch_duration)
        return cls(genesis_ts=genesis, epoch_duration=int(epoch_duration))
