"""Withdrawal eligibility for the OLP vault.

Everything here is a pure projection over values the caller supplies: the
vault contract owns the real state, and the collateralization ratio can move
between a query and a redemption. Nothing is cached between calls.

Timeline for a request made in epoch N (start S, duration D, cooling-off c):

    [S, S+48h]                request window (inclusive end)
    (request, S+(1+c)*D)      cooling-off
    [S+(1+c)*D, +48h]         redemption window (inclusive end)
    after that                expired, must be requested again
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from ostium_client.config.network import VaultSchedule
from ostium_client.errors import EligibilityError, ValidationError

ONE_EPOCH_MIN_RATIO = Decimal("1.20")
TWO_EPOCH_MIN_RATIO = Decimal("1.10")
MAX_COOLING_OFF_EPOCHS = 3


class EligibilityState(str, Enum):
    TOO_EARLY = "TooEarly"
    REQUEST_WINDOW_OPEN = "RequestWindowOpen"
    COOLING_OFF = "CoolingOff"
    REDEMPTION_WINDOW_OPEN = "RedemptionWindowOpen"
    EXPIRED = "Expired"


class WithdrawalStatus(str, Enum):
    PENDING = "Pending"
    COOLING_OFF = "CoolingOff"
    REDEEMABLE = "Redeemable"
    EXPIRED = "Expired"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class VaultEpoch:
    epoch_id: int
    start_ts: int
    duration: int

    @property
    def end_ts(self) -> int:
        return self.start_ts + self.duration


@dataclass(frozen=True)
class WithdrawalRequest:
    """Local projection of a queued withdrawal; the tier is locked at request time."""

    epoch_id: int
    epoch_start_ts: int
    shares: float
    requested_at: int
    ratio_at_request: Decimal
    cooling_off_epochs: int
    completed: bool = False


@dataclass(frozen=True)
class Eligibility:
    state: EligibilityState
    now: int
    epoch: VaultEpoch
    cooling_off_epochs: int
    request_window_end: int
    redemption_start: int
    redemption_end: int
    requested_at: int | None = None

    @property
    def can_request(self) -> bool:
        return self.state == EligibilityState.REQUEST_WINDOW_OPEN

    @property
    def can_redeem(self) -> bool:
        return self.state == EligibilityState.REDEMPTION_WINDOW_OPEN

    @property
    def next_request_window_start(self) -> int:
        if self.state == EligibilityState.REQUEST_WINDOW_OPEN:
            return self.epoch.start_ts
        return self.epoch.end_ts

    @property
    def cooling_off_seconds(self) -> int:
        return self.cooling_off_epochs * self.epoch.duration


def _as_ratio(ratio) -> Decimal:
    try:
        value = ratio if isinstance(ratio, Decimal) else Decimal(str(ratio))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"invalid collateralization ratio {ratio!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValidationError(f"invalid collateralization ratio {ratio!r}")
    return value


def cooling_off_epochs(ratio) -> int:
    """Tier from collateralization (fraction, 1.2 == 120%). 120% itself is the 1-epoch tier."""
    r = _as_ratio(ratio)
    if r >= ONE_EPOCH_MIN_RATIO:
        return 1
    if r >= TWO_EPOCH_MIN_RATIO:
        return 2
    return MAX_COOLING_OFF_EPOCHS


def epoch_at(schedule: VaultSchedule, ts: int) -> VaultEpoch:
    ts = int(ts)
    if ts < schedule.genesis_ts:
        raise ValidationError(f"timestamp {ts} precedes vault genesis {schedule.genesis_ts}")
    epoch_id = (ts - schedule.genesis_ts) // schedule.epoch_duration
    return VaultEpoch(
        epoch_id=epoch_id,
        start_ts=schedule.genesis_ts + epoch_id * schedule.epoch_duration,
        duration=schedule.epoch_duration,
    )


def _epoch_from_start(schedule: VaultSchedule, epoch_start: int) -> VaultEpoch:
    offset = int(epoch_start) - schedule.genesis_ts
    if offset < 0 or offset % schedule.epoch_duration:
        raise ValidationError(f"{epoch_start} is not an epoch boundary")
    return VaultEpoch(
        epoch_id=offset // schedule.epoch_duration,
        start_ts=int(epoch_start),
        duration=schedule.epoch_duration,
    )


def compute_eligibility(
    now: int,
    epoch_start: int | None,
    ratio,
    requested_at: int | None = None,
    *,
    schedule: VaultSchedule,
) -> Eligibility:
    """Project where a withdrawal stands at ``now``.

    Without ``requested_at`` this answers "may I request right now", using the
    epoch containing ``now``. With it, ``epoch_start`` is the start of the epoch
    the request was made in and ``ratio`` is the one observed at request time.
    ``epoch_start`` may be None to derive it from the schedule.
    """
    now = int(now)
    anchor = now if requested_at is None else int(requested_at)
    epoch = epoch_at(schedule, anchor) if epoch_start is None else _epoch_from_start(schedule, epoch_start)
    if not epoch.start_ts <= anchor < epoch.end_ts:
        raise ValidationError(f"timestamp {anchor} is outside epoch {epoch.epoch_id} starting {epoch.start_ts}")

    tier = cooling_off_epochs(ratio)
    request_window_end = epoch.start_ts + schedule.request_window
    redemption_start = epoch.start_ts + (1 + tier) * schedule.epoch_duration
    redemption_end = redemption_start + schedule.redemption_window

    if requested_at is None:
        state = EligibilityState.REQUEST_WINDOW_OPEN if now <= request_window_end else EligibilityState.TOO_EARLY
    else:
        if anchor > request_window_end:
            raise ValidationError(f"request at {anchor} was made after the request window closed at {request_window_end}")
        if now < anchor:
            raise ValidationError(f"now={now} precedes request time {anchor}")
        if now < redemption_start:
            state = EligibilityState.COOLING_OFF
        elif now <= redemption_end:
            state = EligibilityState.REDEMPTION_WINDOW_OPEN
        else:
            state = EligibilityState.EXPIRED

    return Eligibility(
        state=state,
        now=now,
        epoch=epoch,
        cooling_off_epochs=tier,
        request_window_end=request_window_end,
        redemption_start=redemption_start,
        redemption_end=redemption_end,
        requested_at=None if requested_at is None else anchor,
    )


def open_withdrawal_request(schedule: VaultSchedule, now: int, shares: float, ratio) -> WithdrawalRequest:
    """Lock the cooling-off tier for a request made at ``now``; EligibilityError outside the window."""
    if shares <= 0:
        raise ValidationError("shares must be positive")
    elig = compute_eligibility(now, None, ratio, schedule=schedule)
    if not elig.can_request:
        raise EligibilityError(
            f"withdrawal requests close {schedule.request_window // 3600}h into the epoch; "
            f"next window opens at {elig.next_request_window_start}",
            eligibility=elig,
        )
    return WithdrawalRequest(
        epoch_id=elig.epoch.epoch_id,
        epoch_start_ts=elig.epoch.start_ts,
        shares=shares,
        requested_at=int(now),
        ratio_at_request=_as_ratio(ratio),
        cooling_off_epochs=elig.cooling_off_epochs,
    )


def request_eligibility(schedule: VaultSchedule, request: WithdrawalRequest, now: int) -> Eligibility:
    return compute_eligibility(
        now,
        request.epoch_start_ts,
        request.ratio_at_request,
        request.requested_at,
        schedule=schedule,
    )


def withdrawal_status(schedule: VaultSchedule, request: WithdrawalRequest, now: int) -> WithdrawalStatus:
    if request.completed:
        return WithdrawalStatus.COMPLETED
    elig = request_eligibility(schedule, request, now)
    if elig.state == EligibilityState.COOLING_OFF:
        if int(now) < elig.epoch.end_ts:
            return WithdrawalStatus.PENDING
        return WithdrawalStatus.COOLING_OFF
    if elig.state == EligibilityState.REDEMPTION_WINDOW_OPEN:
        return WithdrawalStatus.REDEEMABLE
    return WithdrawalStatus.EXPIRED


def ensure_redeemable(schedule: VaultSchedule, request: WithdrawalRequest, now: int) -> Eligibility:
    elig = request_eligibility(schedule, request, now)
    if not elig.can_redeem:
        if elig.state == EligibilityState.EXPIRED:
            msg = f"redemption window closed at {elig.redemption_end}; request again"
        else:
            msg = f"redemption window opens at {elig.redemption_start}"
        raise EligibilityError(msg, eligibility=elig)
    return elig


class VaultEpochCalculator:
    """Binds the schedule so callers pass only per-call state."""

    def __init__(self, schedule: VaultSchedule):
        self.schedule = schedule

    def epoch_at(self, ts: int) -> VaultEpoch:
        return epoch_at(self.schedule, ts)

    def compute_eligibility(self, now: int, epoch_start: int | None, ratio, requested_at: int | None = None) -> Eligibility:
        return compute_eligibility(now, epoch_start, ratio, requested_at, schedule=self.schedule)

    def open_request(self, now: int, shares: float, ratio) -> WithdrawalRequest:
        return open_withdrawal_request(self.schedule, now, shares, ratio)

    def status(self, request: WithdrawalRequest, now: int) -> WithdrawalStatus:
        return withdrawal_status(self.schedule, request, now)

    def ensure_redeemable(self, request: WithdrawalRequest, now: int) -> Eligibility:
        return ensure_redeemable(self.schedule, request, now)
