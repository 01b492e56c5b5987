from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, ClassVar

from ostium_client.constants import DEFAULT_SLIPPAGE


class OperationKind(str, Enum):
    OPEN_TRADE = "open_trade"
    CLOSE_TRADE = "close_trade"
    CANCEL_ORDER = "cancel_order"
    UPDATE_TP = "update_tp"
    UPDATE_SL = "update_sl"
    APPROVE = "approve"
    VAULT_DEPOSIT = "vault_deposit"
    VAULT_WITHDRAW_REQUEST = "vault_withdraw_request"
    VAULT_APPROVE_AUTO_WITHDRAW = "vault_approve_auto_withdraw"
    VAULT_REDEEM = "vault_redeem"


class OrderType(IntEnum):
    MARKET = 0
    LIMIT = 1
    STOP = 2


@dataclass(frozen=True)
class TxPayload:
    """Encoded call produced by the builder, before nonce and gas are known."""

    operation: OperationKind
    to: str
    data: bytes
    value: int = 0
    gas_limit: int | None = None


@dataclass(frozen=True)
class SigningRequest:
    operation: OperationKind
    to: str
    data: bytes
    value: int
    chain_id: int
    nonce: int
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    sender: str = ""

    def to_tx_dict(self) -> dict[str, Any]:
        return {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "to": self.to,
            "value": self.value,
            "data": "0x" + self.data.hex(),
            "gas": self.gas_limit,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


@dataclass(frozen=True)
class Signature:
    """Fully signed raw transaction. Produced once per SigningRequest."""

    raw_transaction: bytes
    tx_hash: str
    signer_kind: str
    r: int | None = None
    s: int | None = None
    v: int | None = None
    request_id: str = ""


# ── operation parameters ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PlaceOrderParams:
    kind: ClassVar[OperationKind] = OperationKind.OPEN_TRADE

    pair_index: int
    collateral: float
    leverage: float
    is_long: bool
    order_type: OrderType = OrderType.MARKET
    open_price: float | None = None
    take_profit: float | None = None
    stop_loss: float | None = None
    slippage: float = DEFAULT_SLIPPAGE
    trade_index: int = 0
    builder: str | None = None
    builder_fee_bps: int = 0

    @classmethod
    def market(cls, pair_index: int, collateral: float, leverage: float, is_long: bool, **kw) -> "PlaceOrderParams":
        return cls(pair_index=pair_index, collateral=collateral, leverage=leverage, is_long=is_long, **kw)


@dataclass(frozen=True)
class CloseTradeParams:
    kind: ClassVar[OperationKind] = OperationKind.CLOSE_TRADE

    pair_index: int
    trade_index: int
    market_price: float
    close_percentage: float = 100.0
    slippage: float = DEFAULT_SLIPPAGE


@dataclass(frozen=True)
class CancelOrderParams:
    kind: ClassVar[OperationKind] = OperationKind.CANCEL_ORDER

    pair_index: int
    trade_index: int


@dataclass(frozen=True)
class UpdateTakeProfitParams:
    kind: ClassVar[OperationKind] = OperationKind.UPDATE_TP

    pair_index: int
    trade_index: int
    price: float


@dataclass(frozen=True)
class UpdateStopLossParams:
    kind: ClassVar[OperationKind] = OperationKind.UPDATE_SL

    pair_index: int
    trade_index: int
    price: float


@dataclass(frozen=True)
class ApproveParams:
    """ERC-20 approve with a raw (already scaled) amount."""

    kind: ClassVar[OperationKind] = OperationKind.APPROVE

    token: str
    spender: str
    amount: int


@dataclass(frozen=True)
class DepositParams:
    kind: ClassVar[OperationKind] = OperationKind.VAULT_DEPOSIT

    amount: float
    receiver: str | None = None


@dataclass(frozen=True)
class WithdrawRequestParams:
    kind: ClassVar[OperationKind] = OperationKind.VAULT_WITHDRAW_REQUEST

    shares: float
    owner: str | None = None


@dataclass(frozen=True)
class ApproveAutoWithdrawParams:
    kind: ClassVar[OperationKind] = OperationKind.VAULT_APPROVE_AUTO_WITHDRAW

    shares: float
    spender: str | None = None


@dataclass(frozen=True)
class RedeemParams:
    kind: ClassVar[OperationKind] = OperationKind.VAULT_REDEEM

    shares: float
    receiver: str | None = None


OperationParams = (
    PlaceOrderParams
    | CloseTradeParams
    | CancelOrderParams
    | UpdateTakeProfitParams
    | UpdateStopLossParams
    | ApproveParams
    | DepositParams
    | WithdrawRequestParams
    | ApproveAutoWithdrawParams
    | RedeemParams
)


# ── chain state snapshots ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Position:
    trader: str
    pair_index: int
    trade_index: int
    collateral: float
    leverage: float
    is_long: bool
    open_price: float
    take_profit: float | None = None
    stop_loss: float | None = None
    pair_name: str = ""
    trade_id: str = ""
    opened_at: int | None = None

    @property
    def size(self) -> float:
        return self.collateral * self.leverage

    @property
    def direction(self) -> str:
        return "LONG" if self.is_long else "SHORT"


@dataclass(frozen=True)
class VaultPosition:
    shares_raw: int
    assets_raw: int
    shares: float
    value: float


@dataclass(frozen=True)
class VaultEpochInfo:
    """Epoch as projected locally, next to what the vault contract itself reports."""

    current_epoch: int
    epoch_start_ts: int
    epoch_end_ts: int
    withdrawals_open: bool
    chain_epoch_end_ts: int | None = None
    chain_withdrawals_open: bool | None = None


@dataclass(frozen=True)
class ExecutionResult:
    operation: OperationKind
    tx_hash: str
    signer_kind: str
    broadcast: bool = True
    status: int | None = None
    block_number: int | None = None
    gas_used: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 1 or not self.broadcast
