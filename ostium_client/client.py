from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Callable

from ostium_client.chain.gateway import ChainGateway
from ostium_client.chain.reader import ProtocolReader
from ostium_client.config.network import ARBITRUM_ONE, NetworkConfig, VaultSchedule
from ostium_client.config.settings import Settings
from ostium_client.constants import scale_usdc
from ostium_client.data.http_service import HttpService
from ostium_client.data.price_feed import PriceFeed
from ostium_client.data.subgraph import SubgraphClient
from ostium_client.domain import (
    ApproveAutoWithdrawParams,
    ApproveParams,
    CancelOrderParams,
    CloseTradeParams,
    DepositParams,
    ExecutionResult,
    OrderType,
    PlaceOrderParams,
    Position,
    RedeemParams,
    UpdateStopLossParams,
    UpdateTakeProfitParams,
    VaultEpochInfo,
    WithdrawRequestParams,
)
from ostium_client.errors import ConfigError, ValidationError
from ostium_client.execution.builder import TransactionBuilder
from ostium_client.execution.orchestrator import ExecutionOrchestrator
from ostium_client.infra.log import get_logger
from ostium_client.infra.telemetry import RuntimeEventLogger
from ostium_client.signer.base import Signer
from ostium_client.signer.local import LocalSigner
from ostium_client.signer.mpc_api import MpcApiClient
from ostium_client.signer.remote import RemoteMpcSigner
from ostium_client.vault.epoch import MAX_COOLING_OFF_EPOCHS, Eligibility, VaultEpochCalculator, WithdrawalRequest

PENDING_LOOKBACK_EPOCHS = 4


class OstiumClient:
    """One signer, one nonce sequence: mutating calls run one at a time."""

    def __init__(
        self,
        signer: Signer,
        orchestrator: ExecutionOrchestrator,
        reader: ProtocolReader,
        network: NetworkConfig,
        calculator: VaultEpochCalculator,
        *,
        price_feed: PriceFeed | None = None,
        subgraph: SubgraphClient | None = None,
        clock: Callable[[], float] = time.time,
        log: logging.Logger | None = None,
    ):
        self.signer = signer
        self.orchestrator = orchestrator
        self.reader = reader
        self.network = network
        self.calculator = calculator
        self.price_feed = price_feed
        self.subgraph = subgraph
        self.clock = clock
        self.log = log or logging.getLogger("ostium.client")
        self._lock = asyncio.Lock()

    def address(self) -> str:
        return self.signer.address()

    def _now(self) -> int:
        return int(self.clock())

    async def close(self) -> None:
        services = {id(s.http): s.http for s in (self.price_feed, self.subgraph) if s is not None}
        for http in services.values():
            await http.close()
        api = getattr(self.signer, "api", None)
        if api is not None:
            await api.close()

    async def _ensure_allowance(self, spender: str, amount_raw: int) -> ExecutionResult | None:
        current = await self.reader.usdc_allowance(self.address(), spender)
        if current >= amount_raw:
            return None
        self.log.info("approving usdc spender=%s amount=%s (current=%s)", spender, amount_raw, current)
        return await self.orchestrator.execute(ApproveParams(token=self.network.usdc, spender=spender, amount=amount_raw))

    # ── trading ──

    async def place_order(self, params: PlaceOrderParams, *, price_symbol: str | None = None) -> ExecutionResult:
        """Open a trade. Market orders without ``open_price`` take the feed price for ``price_symbol``."""
        if params.open_price is None:
            if params.order_type != OrderType.MARKET or not price_symbol or self.price_feed is None:
                raise ValidationError("open_price is required", operation=params.kind.value)
            params = dataclasses.replace(params, open_price=await self.price_feed.get_price(price_symbol))
        try:
            collateral_raw = scale_usdc(params.collateral)
        except (TypeError, ValueError, ArithmeticError):
            raise ValidationError("collateral must be a number", operation=params.kind.value) from None
        if collateral_raw <= 0:
            raise ValidationError("collateral must be positive", operation=params.kind.value)
        async with self._lock:
            await self._ensure_allowance(self.network.trading_storage, collateral_raw)
            return await self.orchestrator.execute(params)

    async def close_trade(self, pair_index: int, trade_index: int, *, market_price: float | None = None,
                          price_symbol: str | None = None, close_percentage: float = 100.0) -> ExecutionResult:
        if market_price is None:
            if not price_symbol or self.price_feed is None:
                raise ValidationError("market_price is required", operation=CloseTradeParams.kind.value)
            market_price = await self.price_feed.get_price(price_symbol)
        params = CloseTradeParams(
            pair_index=pair_index,
            trade_index=trade_index,
            market_price=market_price,
            close_percentage=close_percentage,
        )
        async with self._lock:
            return await self.orchestrator.execute(params)

    async def cancel_order(self, pair_index: int, trade_index: int) -> ExecutionResult:
        async with self._lock:
            return await self.orchestrator.execute(CancelOrderParams(pair_index=pair_index, trade_index=trade_index))

    async def update_take_profit(self, pair_index: int, trade_index: int, price: float) -> ExecutionResult:
        async with self._lock:
            return await self.orchestrator.execute(
                UpdateTakeProfitParams(pair_index=pair_index, trade_index=trade_index, price=price)
            )

    async def update_stop_loss(self, pair_index: int, trade_index: int, price: float) -> ExecutionResult:
        async with self._lock:
            return await self.orchestrator.execute(
                UpdateStopLossParams(pair_index=pair_index, trade_index=trade_index, price=price)
            )

    # ── vault ──

    async def deposit(self, amount: float, receiver: str | None = None) -> ExecutionResult:
        try:
            amount_raw = scale_usdc(amount)
        except (TypeError, ValueError, ArithmeticError):
            raise ValidationError("amount must be a number", operation=DepositParams.kind.value) from None
        if amount_raw <= 0:
            raise ValidationError("amount must be positive", operation=DepositParams.kind.value)
        async with self._lock:
            await self._ensure_allowance(self.network.vault, amount_raw)
            return await self.orchestrator.execute(DepositParams(amount=amount, receiver=receiver))

    async def withdrawal_eligibility(self, request: WithdrawalRequest | None = None) -> Eligibility:
        """Fresh projection on every call. With a request, its locked tier is used instead of the live ratio."""
        now = self._now()
        if request is not None:
            return self.calculator.compute_eligibility(
                now, request.epoch_start_ts, request.ratio_at_request, request.requested_at
            )
        ratio = await self.reader.collateralization_ratio()
        return self.calculator.compute_eligibility(now, None, ratio)

    async def request_withdrawal(self, shares: float) -> tuple[ExecutionResult, WithdrawalRequest]:
        async with self._lock:
            ratio = await self.reader.collateralization_ratio()
            request = self.calculator.open_request(self._now(), shares, ratio)
            self.log.info(
                "withdraw request shares=%s epoch=%s ratio=%s cooling_off=%s",
                shares, request.epoch_id, ratio, request.cooling_off_epochs,
            )
            result = await self.orchestrator.execute(WithdrawRequestParams(shares=shares))
        return result, request

    async def approve_auto_withdraw(self, shares: float, spender: str | None = None) -> ExecutionResult:
        async with self._lock:
            return await self.orchestrator.execute(ApproveAutoWithdrawParams(shares=shares, spender=spender))

    async def redeem(self, shares: float, *, request: WithdrawalRequest | None = None,
                     receiver: str | None = None) -> ExecutionResult:
        async with self._lock:
            if request is not None:
                self.calculator.ensure_redeemable(request, self._now())
            result = await self.orchestrator.execute(RedeemParams(shares=shares, receiver=receiver))
        if request is not None:
            result.extra["withdrawal_request"] = dataclasses.replace(request, completed=True)
        return result

    # ── reads ──

    async def get_positions(self, trader: str | None = None, *, source: str = "chain") -> list[Position]:
        """Open trades, read from the contracts or from the (possibly lagging) subgraph."""
        trader = trader or self.address()
        if source == "chain":
            return await self.reader.get_positions(trader)
        if source == "subgraph":
            if self.subgraph is None:
                raise ConfigError("no subgraph configured")
            return await self.subgraph.open_trades(trader)
        raise ValidationError(f"unknown positions source {source!r}")

    async def balances(self) -> dict[str, float]:
        owner = self.address()
        usdc = await self.reader.usdc_balance(owner)
        native = await self.reader.native_balance(owner)
        vault = await self.reader.vault_position(owner)
        return {
            "usdc": usdc,
            "eth": native / 10**18,
            "olp_shares": vault.shares,
            "olp_value": vault.value,
        }

    async def get_vault_epoch(self) -> VaultEpochInfo:
        return await self.reader.vault_epoch(now=self._now(), epoch_duration=self.calculator.schedule.epoch_duration)

    async def get_pending_withdrawals(self, owner: str | None = None, *,
                                      lookback: int = PENDING_LOOKBACK_EPOCHS) -> dict[int, float]:
        """Shares queued per unlock epoch. Requests are keyed by the epoch they unlock in,
        so the scan runs up to the longest cooling-off ahead of the current epoch.
        """
        info = await self.get_vault_epoch()
        first = max(0, info.current_epoch - max(0, int(lookback)))
        last = info.current_epoch + MAX_COOLING_OFF_EPOCHS
        return await self.reader.pending_withdrawals(owner or self.address(), range(first, last + 1))


# ── wiring ──


async def build_signer(settings: Settings, *, log: logging.Logger | None = None) -> Signer:
    if settings.signer_kind == "local":
        return LocalSigner.from_private_key(settings.private_key, settings.chain_id, log=log)
    api = MpcApiClient(settings.mpc_api_base, settings.mpc_access_token, settings.mpc_private_key_pem, log=log)
    try:
        return await RemoteMpcSigner.discover(
            api,
            settings.chain_id,
            address=settings.mpc_address or None,
            poll_interval=settings.mpc_poll_interval,
            timeout=settings.mpc_sign_timeout,
            log=log,
        )
    except BaseException:
        await api.close()
        raise


async def build_client(settings: Settings, *, signer: Signer | None = None,
                       log: logging.Logger | None = None) -> OstiumClient:
    log = log or get_logger("ostium", settings.log_level)
    if settings.chain_id != ARBITRUM_ONE:
        raise ConfigError(f"no protocol addresses known for chain id {settings.chain_id}")
    network = NetworkConfig.mainnet(settings.rpc_url)
    gateway = ChainGateway.connect(settings.rpc_url, log=log)
    rpc_chain = await gateway.chain_id()
    if rpc_chain != settings.chain_id:
        raise ConfigError(f"RPC reports chain id {rpc_chain}, expected {settings.chain_id}")

    signer = signer or await build_signer(settings, log=log)
    reader = ProtocolReader(gateway, network, log=log)
    if settings.vault_genesis_ts:
        schedule = VaultSchedule(genesis_ts=settings.vault_genesis_ts)
    else:
        info = await reader.vault_epoch()
        schedule = VaultSchedule.from_chain(info.current_epoch, info.epoch_start_ts)

    orchestrator = ExecutionOrchestrator(
        signer,
        TransactionBuilder(network),
        gateway,
        chain_id=settings.chain_id,
        receipt_timeout=settings.receipt_timeout,
        nonce_fetch_retries=settings.nonce_fetch_retries,
        gas_limit_margin=settings.gas_limit_margin,
        priority_fee_wei=int(settings.priority_fee_gwei * 10**9),
        dry_run=settings.dry_run,
        events=RuntimeEventLogger(settings.data_dir),
        log=log,
    )
    http = HttpService(log=log)
    log.info("client ready signer=%s address=%s dry_run=%s", signer.kind, signer.address(), settings.dry_run)
    return OstiumClient(
        signer,
        orchestrator,
        reader,
        network,
        VaultEpochCalculator(schedule),
        price_feed=PriceFeed(http, settings.price_api_url),
        subgraph=SubgraphClient(http, network.subgraph_url),
        log=log,
    )
