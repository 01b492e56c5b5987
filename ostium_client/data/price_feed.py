from __future__ import annotations

import math

from ostium_client.config.settings import DEFAULT_PRICE_API
from ostium_client.data.http_service import HttpService
from ostium_client.errors import ValidationError


def pick_mid(rows, base: str, quote: str) -> float:
    """Mid price for ``base/quote`` from the latest-prices payload."""
    if not isinstance(rows, list):
        raise ValidationError(f"unexpected price payload type: {type(rows).__name__}")
    for row in rows:
        if not isinstance(row, dict):
            continue
        if str(row.get("from", "")).upper() == base.upper() and str(row.get("to", "")).upper() == quote.upper():
            mid = float(row.get("mid", 0.0) or 0.0)
            if not math.isfinite(mid) or mid <= 0:
                raise ValidationError(f"non-positive price for {base}/{quote}")
            return mid
    raise ValidationError(f"no price found for {base}/{quote}")


class PriceFeed:
    """Reference prices from the protocol's metadata backend. Trusted as-is."""

    def __init__(self, http: HttpService, url: str = DEFAULT_PRICE_API):
        self.http = http
        self.url = url

    async def get_price(self, base: str, quote: str = "USD") -> float:
        rows = await self.http.get_json(self.url, timeout=8.0)
        return pick_mid(rows, base, quote)

    async def get_btc_price(self) -> float:
        return await self.get_price("BTC", "USD")

    async def get_eth_price(self) -> float:
        return await self.get_price("ETH", "USD")
