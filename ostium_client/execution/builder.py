from __future__ import annotations

import math

from web3 import Web3

from ostium_client.chain.abi import ERC20_ABI, TRADING_ABI, VAULT_ABI
from ostium_client.config.network import NetworkConfig
from ostium_client.constants import (
    MAX_LEVERAGE,
    MAX_SLIPPAGE,
    MAX_TRADES_PER_PAIR,
    MAX_UINT192,
    MAX_UINT256,
    MIN_LEVERAGE,
    scale_leverage,
    scale_percent,
    scale_price,
    scale_shares,
    scale_slippage,
    scale_usdc,
)
from ostium_client.domain import (
    ApproveAutoWithdrawParams,
    ApproveParams,
    CancelOrderParams,
    CloseTradeParams,
    DepositParams,
    OperationKind,
    OrderType,
    PlaceOrderParams,
    RedeemParams,
    TxPayload,
    UpdateStopLossParams,
    UpdateTakeProfitParams,
    WithdrawRequestParams,
)
from ostium_client.errors import ValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _fail(kind: OperationKind, msg: str):
    raise ValidationError(msg, operation=kind.value)


def _positive(kind: OperationKind, value, name: str) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        _fail(kind, f"{name} must be a number")
    if not math.isfinite(v) or v <= 0:
        _fail(kind, f"{name} must be positive")
    return v


def _address(kind: OperationKind, value: str | None, name: str) -> str:
    if not value or not Web3.is_address(value):
        _fail(kind, f"{name} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


def _slippage(kind: OperationKind, value) -> int:
    try:
        v = float(value)
    except (TypeError, ValueError):
        _fail(kind, "slippage must be a number")
    if not math.isfinite(v) or not 0.0 <= v <= MAX_SLIPPAGE:
        _fail(kind, f"slippage must be between 0 and {MAX_SLIPPAGE:.0f}%")
    return scale_slippage(v)


def _integer(kind: OperationKind, value, name: str, upper: int) -> int:
    """Whole number in [0, upper]. Floats must carry no fraction."""
    if isinstance(value, bool):
        _fail(kind, f"{name} must be an integer")
    try:
        v = int(value)
    except (TypeError, ValueError, OverflowError):
        _fail(kind, f"{name} must be an integer: {value!r}")
    if isinstance(value, float) and v != value:
        _fail(kind, f"{name} must be an integer: {value!r}")
    if not 0 <= v <= upper:
        _fail(kind, f"{name} out of range: {value}")
    return v


def _indices(kind: OperationKind, pair_index, trade_index) -> tuple[int, int]:
    return (
        _integer(kind, pair_index, "pair index", 2**16 - 1),
        _integer(kind, trade_index, "trade index", MAX_TRADES_PER_PAIR - 1),
    )


def _price(kind: OperationKind, value, name: str) -> int:
    scaled = scale_price(_positive(kind, value, name))
    if scaled > MAX_UINT192:
        _fail(kind, f"{name} too large")
    return scaled


class TransactionBuilder:
    """Validates operation parameters and encodes calldata. No network access."""

    def __init__(self, network: NetworkConfig):
        self.network = network
        w3 = Web3()
        self._trading = w3.eth.contract(address=Web3.to_checksum_address(network.trading), abi=TRADING_ABI)
        self._vault = w3.eth.contract(address=Web3.to_checksum_address(network.vault), abi=VAULT_ABI)
        self._erc20_abi = ERC20_ABI
        self._w3 = w3
        self._encoders = {
            OperationKind.OPEN_TRADE: self._open_trade,
            OperationKind.CLOSE_TRADE: self._close_trade,
            OperationKind.CANCEL_ORDER: self._cancel_order,
            OperationKind.UPDATE_TP: self._update_tp,
            OperationKind.UPDATE_SL: self._update_sl,
            OperationKind.APPROVE: self._approve,
            OperationKind.VAULT_DEPOSIT: self._deposit,
            OperationKind.VAULT_WITHDRAW_REQUEST: self._withdraw_request,
            OperationKind.VAULT_APPROVE_AUTO_WITHDRAW: self._approve_auto_withdraw,
            OperationKind.VAULT_REDEEM: self._redeem,
        }

    def build(self, params, sender: str) -> TxPayload:
        kind = getattr(params, "kind", None)
        encoder = self._encoders.get(kind)
        if encoder is None:
            raise ValidationError(f"unsupported operation {type(params).__name__}")
        sender = _address(kind, sender, "sender")
        return encoder(params, sender)

    @staticmethod
    def _data(contract, fn_name: str, args: list) -> bytes:
        return bytes.fromhex(contract.encode_abi(fn_name, args=args)[2:])

    # ── trading ──

    def _open_trade(self, p: PlaceOrderParams, sender: str) -> TxPayload:
        kind = p.kind
        collateral = scale_usdc(_positive(kind, p.collateral, "collateral"))
        if collateral <= 0:
            _fail(kind, "collateral below 1 micro-USDC")
        leverage = _positive(kind, p.leverage, "leverage")
        if not math.isfinite(leverage) or not MIN_LEVERAGE <= leverage <= MAX_LEVERAGE:
            _fail(kind, f"leverage must be between {MIN_LEVERAGE:g} and {MAX_LEVERAGE:g}")
        slippage = _slippage(kind, p.slippage)
        pair_index, trade_index = _indices(kind, p.pair_index, p.trade_index)
        try:
            order_type = OrderType(p.order_type)
        except ValueError:
            _fail(kind, f"unknown order type {p.order_type!r}")
        if p.open_price is None:
            _fail(kind, "open price required (market orders use the reference price)")
        open_price = _price(kind, p.open_price, "open price")
        tp = _price(kind, p.take_profit, "take profit") if p.take_profit is not None else 0
        sl = _price(kind, p.stop_loss, "stop loss") if p.stop_loss is not None else 0
        fee_bps = _integer(kind, p.builder_fee_bps, "builder fee", 2**32 - 1)
        builder = _address(kind, p.builder, "builder") if p.builder else ZERO_ADDRESS

        trade = (collateral, open_price, tp, sl, sender, scale_leverage(leverage), pair_index, trade_index, bool(p.is_long))
        data = self._data(self._trading, "openTrade", [trade, (builder, fee_bps), int(order_type), slippage])
        return TxPayload(operation=kind, to=self._trading.address, data=data)

    def _close_trade(self, p: CloseTradeParams, sender: str) -> TxPayload:
        kind = p.kind
        pair_index, trade_index = _indices(kind, p.pair_index, p.trade_index)
        pct = _positive(kind, p.close_percentage, "close percentage")
        if not math.isfinite(pct) or not 0.0 < pct <= 100.0:
            _fail(kind, "close percentage must be in (0, 100]")
        price = _price(kind, p.market_price, "market price")
        data = self._data(
            self._trading,
            "closeTradeMarket",
            [pair_index, trade_index, scale_percent(pct), price, _slippage(kind, p.slippage)],
        )
        return TxPayload(operation=kind, to=self._trading.address, data=data)

    def _cancel_order(self, p: CancelOrderParams, sender: str) -> TxPayload:
        pair_index, trade_index = _indices(p.kind, p.pair_index, p.trade_index)
        data = self._data(self._trading, "cancelOpenLimitOrder", [pair_index, trade_index])
        return TxPayload(operation=p.kind, to=self._trading.address, data=data)

    def _update_tp(self, p: UpdateTakeProfitParams, sender: str) -> TxPayload:
        pair_index, trade_index = _indices(p.kind, p.pair_index, p.trade_index)
        data = self._data(self._trading, "updateTp", [pair_index, trade_index, _price(p.kind, p.price, "take profit")])
        return TxPayload(operation=p.kind, to=self._trading.address, data=data)

    def _update_sl(self, p: UpdateStopLossParams, sender: str) -> TxPayload:
        pair_index, trade_index = _indices(p.kind, p.pair_index, p.trade_index)
        data = self._data(self._trading, "updateSl", [pair_index, trade_index, _price(p.kind, p.price, "stop loss")])
        return TxPayload(operation=p.kind, to=self._trading.address, data=data)

    # ── tokens ──

    def _approve(self, p: ApproveParams, sender: str) -> TxPayload:
        token = _address(p.kind, p.token, "token")
        spender = _address(p.kind, p.spender, "spender")
        amount = _integer(p.kind, p.amount, "approve amount", MAX_UINT256)
        contract = self._w3.eth.contract(address=token, abi=self._erc20_abi)
        data = self._data(contract, "approve", [spender, amount])
        return TxPayload(operation=p.kind, to=token, data=data)

    # ── vault ──

    def _deposit(self, p: DepositParams, sender: str) -> TxPayload:
        amount = scale_usdc(_positive(p.kind, p.amount, "deposit amount"))
        if amount <= 0:
            _fail(p.kind, "deposit amount below 1 micro-USDC")
        receiver = _address(p.kind, p.receiver, "receiver") if p.receiver else sender
        data = self._data(self._vault, "deposit", [amount, receiver])
        return TxPayload(operation=p.kind, to=self._vault.address, data=data)

    def _shares(self, kind: OperationKind, shares) -> int:
        raw = scale_shares(_positive(kind, shares, "shares"))
        if raw <= 0:
            _fail(kind, "shares below 1 micro-share")
        return raw

    def _withdraw_request(self, p: WithdrawRequestParams, sender: str) -> TxPayload:
        owner = _address(p.kind, p.owner, "owner") if p.owner else sender
        data = self._data(self._vault, "makeWithdrawRequest", [self._shares(p.kind, p.shares), owner])
        return TxPayload(operation=p.kind, to=self._vault.address, data=data)

    def _approve_auto_withdraw(self, p: ApproveAutoWithdrawParams, sender: str) -> TxPayload:
        spender = _address(p.kind, p.spender or self.network.auto_withdraw_spender, "auto-withdraw spender")
        data = self._data(self._vault, "approve", [spender, self._shares(p.kind, p.shares)])
        return TxPayload(operation=p.kind, to=self._vault.address, data=data)

    def _redeem(self, p: RedeemParams, sender: str) -> TxPayload:
        receiver = _address(p.kind, p.receiver, "receiver") if p.receiver else sender
        data = self._data(self._vault, "redeem", [self._shares(p.kind, p.shares), receiver, sender])
        return TxPayload(operation=p.kind, to=self._vault.address, data=data)
