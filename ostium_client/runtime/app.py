from __future__ import annotations

import argparse
import asyncio
import sys
import time

from ostium_client.client import OstiumClient, build_client
from ostium_client.config import Settings
from ostium_client.domain import ExecutionResult, OrderType, PlaceOrderParams
from ostium_client.errors import OstiumError
from ostium_client.infra import get_logger


def _fmt_ts(ts: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S UTC", time.gmtime(ts))


def _result_line(result: ExecutionResult) -> str:
    if not result.broadcast:
        return f"{result.operation.value}: signed (dry run) tx={result.tx_hash}"
    return f"{result.operation.value}: confirmed tx={result.tx_hash} block={result.block_number} gas={result.gas_used}"


class App:
    """Runs one CLI command against a freshly built client."""

    def __init__(self, settings: Settings, args: argparse.Namespace, *, out=None):
        self.settings = settings
        self.args = args
        self.out = out or sys.stdout
        self.log = get_logger("ostium", settings.log_level)

    def echo(self, line: str) -> None:
        print(line, file=self.out)

    async def run(self) -> None:
        self.log.info(
            "command=%s signer=%s dry_run=%s chain=%s",
            self.args.command,
            self.settings.signer_kind,
            self.settings.dry_run,
            self.settings.chain_id,
        )
        client = await build_client(self.settings, log=self.log)
        try:
            await self.dispatch(client)
        finally:
            await client.close()

    async def dispatch(self, client: OstiumClient) -> None:
        handler = getattr(self, "cmd_" + self.args.command.replace("-", "_"))
        await handler(client)

    async def cmd_info(self, client: OstiumClient) -> None:
        bal = await client.balances()
        self.echo(f"address: {client.address()} ({client.signer.kind})")
        self.echo(f"usdc: {bal['usdc']:.2f}  eth: {bal['eth']:.6f}")
        self.echo(f"olp: {bal['olp_shares']:.6f} shares (~{bal['olp_value']:.2f} USDC)")
        events = client.orchestrator.events
        for tx_hash in events.unconfirmed() if events is not None else []:
            self.echo(f"unconfirmed: {tx_hash} (re-query before resubmitting)")
        source = "subgraph" if getattr(self.args, "subgraph", False) else "chain"
        for p in await client.get_positions(source=source):
            label = f" {p.pair_name}" if p.pair_name else ""
            self.echo(
                f"pair={p.pair_index}{label} idx={p.trade_index} {p.direction} "
                f"collateral={p.collateral:.2f} lev={p.leverage:g}x open={p.open_price:g}"
            )

    async def cmd_price(self, client: OstiumClient) -> None:
        price = await client.price_feed.get_price(self.args.asset.upper(), self.args.quote.upper())
        self.echo(f"{self.args.asset.upper()}/{self.args.quote.upper()}: {price:,.2f}")

    async def _open(self, client: OstiumClient, is_long: bool) -> None:
        a = self.args
        params = PlaceOrderParams(
            pair_index=a.pair,
            collateral=a.collateral,
            leverage=a.leverage,
            is_long=is_long,
            order_type=OrderType[a.order_type.upper()],
            open_price=a.price,
            take_profit=a.tp,
            stop_loss=a.sl,
            slippage=a.slippage,
        )
        self.echo(_result_line(await client.place_order(params, price_symbol=a.asset)))

    async def cmd_long(self, client: OstiumClient) -> None:
        await self._open(client, True)

    async def cmd_short(self, client: OstiumClient) -> None:
        await self._open(client, False)

    async def cmd_close(self, client: OstiumClient) -> None:
        a = self.args
        result = await client.close_trade(
            a.pair, a.index, market_price=a.price, price_symbol=a.asset, close_percentage=a.percent
        )
        self.echo(_result_line(result))

    async def cmd_deposit(self, client: OstiumClient) -> None:
        self.echo(_result_line(await client.deposit(self.args.amount)))

    async def cmd_withdraw_request(self, client: OstiumClient) -> None:
        result, request = await client.request_withdrawal(self.args.shares)
        self.echo(_result_line(result))
        elig = client.calculator.compute_eligibility(
            request.requested_at, request.epoch_start_ts, request.ratio_at_request, request.requested_at
        )
        self.echo(
            f"cooling off {request.cooling_off_epochs} epoch(s); redeem between "
            f"{_fmt_ts(elig.redemption_start)} and {_fmt_ts(elig.redemption_end)}"
        )

    async def cmd_eligibility(self, client: OstiumClient) -> None:
        elig = await client.withdrawal_eligibility()
        self.echo(f"state: {elig.state.value} (epoch {elig.epoch.epoch_id}, cooling off {elig.cooling_off_epochs})")
        if elig.can_request:
            self.echo(f"request window closes {_fmt_ts(elig.request_window_end)}")
        else:
            self.echo(f"next request window opens {_fmt_ts(elig.next_request_window_start)}")
        info = await client.get_vault_epoch()
        if info.chain_withdrawals_open is not None or info.chain_epoch_end_ts is not None:
            end = _fmt_ts(info.chain_epoch_end_ts) if info.chain_epoch_end_ts else "n/a"
            self.echo(f"vault reports: withdrawals_open={info.chain_withdrawals_open} epoch_end={end}")
        pending = await client.get_pending_withdrawals()
        for epoch, shares in sorted(pending.items()):
            self.echo(f"pending: epoch={epoch} shares={shares:.6f}")

    async def cmd_approve_auto_withdraw(self, client: OstiumClient) -> None:
        self.echo(_result_line(await client.approve_auto_withdraw(self.args.shares, self.args.spender)))


def run_main(settings: Settings, args: argparse.Namespace) -> int:
    try:
        asyncio.run(App(settings, args).run())
    except OstiumError as exc:
        print(f"error: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    return 0
