from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable
from decimal import Decimal

from web3 import Web3

from ostium_client.chain.abi import ERC20_ABI, TRADING_STORAGE_ABI, VAULT_ABI
from ostium_client.chain.gateway import ChainGateway
from ostium_client.config.network import REQUEST_WINDOW, NetworkConfig
from ostium_client.constants import (
    COLLATERALIZATION_DECIMALS,
    LEVERAGE_DECIMALS,
    MAX_PAIRS,
    MAX_TRADES_PER_PAIR,
    OLP_DECIMALS,
    PRICE_DECIMALS,
    USDC_DECIMALS,
    unscale_from_decimals,
)
from ostium_client.domain import Position, VaultEpochInfo, VaultPosition
from ostium_client.errors import ChainRejectionError

EPOCH_DURATION_FALLBACK = 3 * 24 * 3600


async def gather_bounded(coros: list[Awaitable], limit: int):
    sem = asyncio.Semaphore(max(1, int(limit)))

    async def _run(coro):
        async with sem:
            return await coro

    return await asyncio.gather(*[_run(c) for c in coros])


class ProtocolReader:
    """Read-only protocol state. Every call re-reads the chain."""

    def __init__(self, gateway: ChainGateway, network: NetworkConfig, *, log: logging.Logger | None = None,
                 concurrency: int = 8):
        self.gateway = gateway
        self.network = network
        self.log = log or logging.getLogger("ostium.reader")
        self.concurrency = concurrency
        self._usdc = gateway.contract(network.usdc, ERC20_ABI)
        self._storage = gateway.contract(network.trading_storage, TRADING_STORAGE_ABI)
        self._vault = gateway.contract(network.vault, VAULT_ABI)

    # ── tokens ──

    async def usdc_balance(self, owner: str) -> float:
        raw = await self.gateway.call(self._usdc.functions.balanceOf(Web3.to_checksum_address(owner)), what="usdc.balanceOf")
        return unscale_from_decimals(raw, USDC_DECIMALS)

    async def usdc_allowance(self, owner: str, spender: str) -> int:
        fn = self._usdc.functions.allowance(Web3.to_checksum_address(owner), Web3.to_checksum_address(spender))
        return int(await self.gateway.call(fn, what="usdc.allowance"))

    async def native_balance(self, owner: str) -> int:
        return await self.gateway.get_balance(owner)

    # ── positions ──

    async def open_trades_count(self, trader: str, pair_index: int) -> int:
        fn = self._storage.functions.openTradesCount(Web3.to_checksum_address(trader), int(pair_index))
        return int(await self.gateway.call(fn, what="openTradesCount"))

    async def get_position(self, trader: str, pair_index: int, trade_index: int) -> Position | None:
        fn = self._storage.functions.getOpenTrade(Web3.to_checksum_address(trader), int(pair_index), int(trade_index))
        t = await self.gateway.call(fn, what="getOpenTrade")
        collateral, open_price, tp, sl, owner, leverage, pair, index, buy = t
        if int(collateral) == 0:
            return None
        return Position(
            trader=owner,
            pair_index=int(pair),
            trade_index=int(index),
            collateral=unscale_from_decimals(collateral, USDC_DECIMALS),
            leverage=int(leverage) / 10**LEVERAGE_DECIMALS,
            is_long=bool(buy),
            open_price=unscale_from_decimals(open_price, PRICE_DECIMALS),
            take_profit=unscale_from_decimals(tp, PRICE_DECIMALS) if int(tp) else None,
            stop_loss=unscale_from_decimals(sl, PRICE_DECIMALS) if int(sl) else None,
        )

    async def get_positions(self, trader: str, *, max_pairs: int = MAX_PAIRS) -> list[Position]:
        counts = await gather_bounded(
            [self.open_trades_count(trader, p) for p in range(max_pairs)], self.concurrency
        )
        pairs = [p for p, n in zip(range(max_pairs), counts) if n > 0]
        rows = await gather_bounded(
            [self.get_position(trader, p, i) for p in pairs for i in range(MAX_TRADES_PER_PAIR)],
            self.concurrency,
        )
        return [r for r in rows if r is not None]

    # ── vault ──

    async def vault_position(self, owner: str) -> VaultPosition:
        shares = int(await self.gateway.call(self._vault.functions.balanceOf(Web3.to_checksum_address(owner)),
                                             what="vault.balanceOf"))
        assets = int(await self.gateway.call(self._vault.functions.convertToAssets(shares), what="vault.convertToAssets"))
        return VaultPosition(
            shares_raw=shares,
            assets_raw=assets,
            shares=unscale_from_decimals(shares, OLP_DECIMALS),
            value=unscale_from_decimals(assets, USDC_DECIMALS),
        )

    async def vault_epoch(self, *, now: int | None = None,
                          epoch_duration: int = EPOCH_DURATION_FALLBACK) -> VaultEpochInfo:
        epoch = int(await self.gateway.call(self._vault.functions.currentEpoch(), what="vault.currentEpoch"))
        start = int(await self.gateway.call(self._vault.functions.currentEpochStart(), what="vault.currentEpochStart"))
        chain_end = await self._optional_view(self._vault.functions.currentEpochEnd(), "vault.currentEpochEnd")
        chain_open = await self._optional_view(self._vault.functions.withdrawalsOpen(), "vault.withdrawalsOpen")
        now = int(time.time()) if now is None else int(now)
        return VaultEpochInfo(
            current_epoch=epoch,
            epoch_start_ts=start,
            epoch_end_ts=start + epoch_duration,
            withdrawals_open=start <= now <= start + REQUEST_WINDOW,
            chain_epoch_end_ts=int(chain_end) if chain_end is not None else None,
            chain_withdrawals_open=bool(chain_open) if chain_open is not None else None,
        )

    async def _optional_view(self, fn, what: str):
        """Views not every vault deployment exposes. A revert reads as None."""
        try:
            return await self.gateway.call(fn, what=what)
        except ChainRejectionError as exc:
            self.log.debug("%s unavailable: %s", what, exc)
            return None

    async def collateralization_ratio(self) -> Decimal:
        """Vault assets over liabilities as a fraction. A snapshot, stale as soon as it returns."""
        raw = int(await self.gateway.call(self._vault.functions.collateralizationP(), what="vault.collateralizationP"))
        return Decimal(raw) / (Decimal(10) ** (COLLATERALIZATION_DECIMALS + 2))

    async def pending_withdrawal(self, owner: str, epoch: int) -> int:
        fn = self._vault.functions.withdrawRequests(Web3.to_checksum_address(owner), int(epoch))
        return int(await self.gateway.call(fn, what="vault.withdrawRequests"))

    async def pending_withdrawals(self, owner: str, epochs: Iterable[int]) -> dict[int, float]:
        epochs = list(epochs)
        rows = await gather_bounded([self.pending_withdrawal(owner, e) for e in epochs], self.concurrency)
        return {e: unscale_from_decimals(raw, OLP_DECIMALS) for e, raw in zip(epochs, rows) if raw > 0}
