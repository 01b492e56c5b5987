from .http_service import HttpService
from .price_feed import PriceFeed, pick_mid
from .subgraph import SubgraphClient, parse_trade

__all__ = ["HttpService", "PriceFeed", "pick_mid", "SubgraphClient", "parse_trade"]
