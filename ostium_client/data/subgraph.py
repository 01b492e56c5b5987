from __future__ import annotations

from ostium_client.config.network import SUBGRAPH_URL
from ostium_client.constants import LEVERAGE_DECIMALS, PRICE_DECIMALS, USDC_DECIMALS, unscale_from_decimals
from ostium_client.data.http_service import HttpService
from ostium_client.domain import Position
from ostium_client.errors import TransientNetworkError, ValidationError

OPEN_TRADES_QUERY = """
query trades($trader: Bytes!) {
  trades(where: { isOpen: true, trader: $trader }) {
    tradeID
    collateral
    leverage
    openPrice
    stopLossPrice
    takeProfitPrice
    isOpen
    timestamp
    isBuy
    index
    pair { id from to }
  }
}
"""


def _optional_price(raw) -> float | None:
    value = int(raw or 0)
    return unscale_from_decimals(value, PRICE_DECIMALS) if value else None


def parse_trade(row: dict, trader: str) -> Position:
    """One ``trades`` row. Amounts arrive as decimal strings in on-chain units."""
    try:
        pair = row["pair"]
        return Position(
            trader=trader,
            pair_index=int(pair["id"]),
            trade_index=int(row["index"]),
            collateral=unscale_from_decimals(int(row["collateral"]), USDC_DECIMALS),
            leverage=int(row["leverage"]) / 10**LEVERAGE_DECIMALS,
            is_long=bool(row["isBuy"]),
            open_price=unscale_from_decimals(int(row["openPrice"]), PRICE_DECIMALS),
            take_profit=_optional_price(row.get("takeProfitPrice")),
            stop_loss=_optional_price(row.get("stopLossPrice")),
            pair_name=f"{pair.get('from', '')}/{pair.get('to', '')}",
            trade_id=str(row.get("tradeID") or ""),
            opened_at=int(row["timestamp"]) if row.get("timestamp") else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"malformed subgraph trade: {exc}") from exc


class SubgraphClient:
    """Open trades from the protocol subgraph. Indexed, so it can trail the chain by a few blocks."""

    def __init__(self, http: HttpService, url: str = SUBGRAPH_URL):
        self.http = http
        self.url = url

    async def open_trades(self, trader: str) -> list[Position]:
        body = {"query": OPEN_TRADES_QUERY, "variables": {"trader": trader.lower()}}
        payload = await self.http.post_json(self.url, body, timeout=30.0, cache_ttl=0)
        if not isinstance(payload, dict):
            raise ValidationError(f"unexpected subgraph payload type: {type(payload).__name__}")
        errors = payload.get("errors") or []
        if errors:
            messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
            raise TransientNetworkError(f"subgraph errors: {messages}")
        trades = (payload.get("data") or {}).get("trades") or []
        rows = [parse_trade(row, trader) for row in trades if not isinstance(row, dict) or row.get("isOpen", True)]
        return sorted(rows, key=lambda p: (p.pair_index, p.trade_index))
