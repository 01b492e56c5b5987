from .epoch import (
    MAX_COOLING_OFF_EPOCHS,
    Eligibility,
    EligibilityState,
    VaultEpoch,
    VaultEpochCalculator,
    WithdrawalRequest,
    WithdrawalStatus,
    compute_eligibility,
    cooling_off_epochs,
    ensure_redeemable,
    epoch_at,
    open_withdrawal_request,
    withdrawal_status,
)

__all__ = [
    "Eligibility",
    "EligibilityState",
    "VaultEpoch",
    "VaultEpochCalculator",
    "WithdrawalRequest",
    "WithdrawalStatus",
    "compute_eligibility",
    "cooling_off_epochs",
    "MAX_COOLING_OFF_EPOCHS",
    "ensure_redeemable",
    "epoch_at",
    "open_withdrawal_request",
    "withdrawal_status",
]
