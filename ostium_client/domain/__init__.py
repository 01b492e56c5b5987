from .models import (
    ApproveAutoWithdrawParams,
    ApproveParams,
    CancelOrderParams,
    CloseTradeParams,
    DepositParams,
    ExecutionResult,
    OperationKind,
    OperationParams,
    OrderType,
    PlaceOrderParams,
    Position,
    RedeemParams,
    Signature,
    SigningRequest,
    TxPayload,
    UpdateStopLossParams,
    UpdateTakeProfitParams,
    VaultEpochInfo,
    VaultPosition,
    WithdrawRequestParams,
)

__all__ = [
    "ApproveAutoWithdrawParams",
    "ApproveParams",
    "CancelOrderParams",
    "CloseTradeParams",
    "DepositParams",
    "ExecutionResult",
    "OperationKind",
    "OperationParams",
    "OrderType",
    "PlaceOrderParams",
    "Position",
    "RedeemParams",
    "Signature",
    "SigningRequest",
    "TxPayload",
    "UpdateStopLossParams",
    "UpdateTakeProfitParams",
    "VaultEpochInfo",
    "VaultPosition",
    "WithdrawRequestParams",
]
