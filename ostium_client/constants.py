from __future__ import annotations

from decimal import Decimal, ROUND_DOWN

USDC_DECIMALS = 6
OLP_DECIMALS = 6
PRICE_DECIMALS = 18
LEVERAGE_DECIMALS = 2
SLIPPAGE_DECIMALS = 2
PERCENT_DECIMALS = 2
COLLATERALIZATION_DECIMALS = 2

MIN_LEVERAGE = 2.0
MAX_LEVERAGE = 1000.0
MAX_SLIPPAGE = 100.0
DEFAULT_SLIPPAGE = 2.0
MAX_TRADES_PER_PAIR = 3
MAX_PAIRS = 50

MAX_UINT256 = 2**256 - 1
MAX_UINT192 = 2**192 - 1


def scale_to_decimals(value, decimals: int) -> int:
    """Scale a human amount to its integer on-chain form, truncating the remainder."""
    scaled = (Decimal(str(value)) * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def unscale_from_decimals(value: int, decimals: int) -> float:
    return float(Decimal(int(value)) / (Decimal(10) ** decimals))


def scale_usdc(amount) -> int:
    return scale_to_decimals(amount, USDC_DECIMALS)


def scale_shares(shares) -> int:
    return scale_to_decimals(shares, OLP_DECIMALS)


def scale_price(price) -> int:
    return scale_to_decimals(price, PRICE_DECIMALS)


def scale_leverage(leverage) -> int:
    return scale_to_decimals(leverage, LEVERAGE_DECIMALS)


def scale_slippage(slippage_percent) -> int:
    return scale_to_decimals(slippage_percent, SLIPPAGE_DECIMALS)


def scale_percent(percent) -> int:
    return scale_to_decimals(percent, PERCENT_DECIMALS)
