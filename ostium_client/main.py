from __future__ import annotations

import argparse
import sys

from ostium_client.config import load_settings
from ostium_client.constants import DEFAULT_SLIPPAGE
from ostium_client.errors import ConfigError
from ostium_client.runtime.app import run_main


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="ostium", description="Ostium trading and OLP vault client")
    ap.add_argument("--env-file", default=None, help="dotenv file (default: $OSTIUM_ENV_FILE or ~/.ostium.env)")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="balances, vault shares and open positions")
    p.add_argument("--subgraph", action="store_true", help="list positions from the subgraph instead of the contracts")

    p = sub.add_parser("price", help="reference price")
    p.add_argument("asset", nargs="?", default="BTC")
    p.add_argument("--quote", default="USD")

    for side in ("long", "short"):
        p = sub.add_parser(side, help=f"open a {side} position")
        p.add_argument("--pair", type=int, default=0)
        p.add_argument("--collateral", type=float, required=True)
        p.add_argument("--leverage", type=float, required=True)
        p.add_argument("--order-type", choices=("market", "limit", "stop"), default="market")
        p.add_argument("--price", type=float, default=None, help="open price (market orders default to the feed)")
        p.add_argument("--asset", default="BTC", help="feed symbol for market orders")
        p.add_argument("--tp", type=float, default=None)
        p.add_argument("--sl", type=float, default=None)
        p.add_argument("--slippage", type=float, default=DEFAULT_SLIPPAGE)

    p = sub.add_parser("close", help="close an open position")
    p.add_argument("--pair", type=int, default=0)
    p.add_argument("--index", type=int, default=0)
    p.add_argument("--price", type=float, default=None)
    p.add_argument("--asset", default="BTC")
    p.add_argument("--percent", type=float, default=100.0)

    p = sub.add_parser("deposit", help="deposit USDC into the OLP vault")
    p.add_argument("amount", type=float)

    p = sub.add_parser("withdraw-request", help="queue an OLP withdrawal for the current epoch")
    p.add_argument("shares", type=float)

    sub.add_parser("eligibility", help="withdrawal window state and pending requests")

    p = sub.add_parser("approve-auto-withdraw", help="allow automatic redemption of OLP shares")
    p.add_argument("shares", type=float)
    p.add_argument("--spender", default=None)
    return ap


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.env_file)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return run_main(settings, args)


if __name__ == "__main__":
    sys.exit(main())
