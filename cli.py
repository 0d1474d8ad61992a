"""
Command line entry point for Crypto Bookkeeper.
Works against the persisted state in the configured database.
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from config import get_settings
from db_engine import init_db
from services import pnl_calendar
from services.balances import BalanceService
from services.common import parse_datetime, utc_now
from services.csv_io import export_transactions_csv, parse_transactions_csv, template_csv
from services.exceptions import BookkeeperError
from services.fiat_ledger import filter_fiat, summarize_fiat
from services.filters import PairFilter, PnLSign, TimeRange, TimeRangeType
from services.portfolio import PortfolioService
from services.prices import PriceService
from services.session import BookkeeperSession

logger = logging.getLogger(__name__)


def _fmt(value: Optional[float], digits: int = 2) -> str:
    return "-" if value is None else f"{value:,.{digits}f}"


def cmd_stats(session: BookkeeperSession, args) -> int:
    stats = session.store.statistics()
    print(f"Active legs:   {stats.active_count}")
    print(f"In trash:      {stats.deleted_count}")
    print(f"Buy volume:    {_fmt(stats.buy_volume)}")
    print(f"Sell volume:   {_fmt(stats.sell_volume)}")
    print(f"Total fees:    {_fmt(stats.total_fees)}")
    print(f"Realized PnL:  {_fmt(stats.total_pnl)}")
    return 0


def cmd_list(session: BookkeeperSession, args) -> int:
    if args.trash:
        rows = session.store.trash()
    else:
        pair_filter = PairFilter(
            coin=args.coin or "",
            platform=args.platform or "",
            pnl_sign=PnLSign(args.pnl),
            min_apr=args.min_apr,
            max_apr=args.max_apr,
            time_range=TimeRange(
                kind=TimeRangeType(args.range),
                year=args.year,
                month=args.month,
                start=args.start,
                end=args.end,
            ),
        )
        rows = session.store.query(pair_filter, now=utc_now())

    for row in rows:
        buy = f"{_fmt(row.buy.amount, 6)} @ {_fmt(row.buy.price)}" if row.buy else "-"
        sell = f"{_fmt(row.sell.amount, 6)} @ {_fmt(row.sell.price)}" if row.sell else "-"
        print(f"{row.date[:10]}  {row.pair:<12} {row.platform:<10} buy {buy:<28} sell {sell:<28} "
              f"pnl {_fmt(row.pnl)}  apr {_fmt(row.apr)}%")
    print(f"{len(rows)} row(s)")
    return 0


def cmd_import_csv(session: BookkeeperSession, args) -> int:
    text = Path(args.file).read_text(encoding='utf-8')
    transactions = parse_transactions_csv(text)
    added = session.store.import_transactions(transactions)
    print(f"Imported {len(added)} transaction(s)")
    return 0


def cmd_export_csv(session: BookkeeperSession, args) -> int:
    txs = session.store.all() if args.include_deleted else session.store.active()
    Path(args.file).write_text(export_transactions_csv(txs), encoding='utf-8')
    print(f"Exported {len(txs)} transaction(s) to {args.file}")
    return 0


def cmd_csv_template(session: BookkeeperSession, args) -> int:
    Path(args.file).write_text(template_csv(), encoding='utf-8')
    print(f"Wrote template to {args.file}")
    return 0


def cmd_backup_export(session: BookkeeperSession, args) -> int:
    Path(args.file).write_text(session.export_backup_json(), encoding='utf-8')
    print(f"Backup written to {args.file}")
    return 0


def cmd_backup_import(session: BookkeeperSession, args) -> int:
    raw = Path(args.file).read_text(encoding='utf-8')
    if not session.import_backup(raw):
        print("Backup import failed: invalid backup file", file=sys.stderr)
        return 1
    print(f"Restored backup from {args.file}")
    return 0


def cmd_calendar(session: BookkeeperSession, args) -> int:
    now = utc_now()
    year, month = args.year or now.year, args.month or now.month
    txs = session.store.active()
    daily = pnl_calendar.daily_pnl(txs)
    buy_days = pnl_calendar.open_buy_days(txs)
    days = sorted(d for d in set(daily) | buy_days if d.year == year and d.month == month)
    for day in days:
        marker = " (open buy)" if day in buy_days else ""
        pnl = _fmt(daily[day]) if day in daily else "-"
        print(f"{day.isoformat()}  {pnl:>12}{marker}")
    print(f"Month total: {_fmt(pnl_calendar.monthly_pnl(txs, year, month))}")
    return 0


def cmd_fiat(session: BookkeeperSession, args) -> int:
    entries = filter_fiat(session.state.fiat_transactions, args.month)
    for tx in entries:
        print(f"{tx.date[:10]}  {tx.type:<8} {_fmt(tx.amount):>14} {tx.currency:<5} {tx.platform}")
    summary = summarize_fiat(session.state.fiat_transactions, args.month)
    print(f"In {_fmt(summary.total_in)}  Out {_fmt(summary.total_out)}  Net {_fmt(summary.net_flow)}")
    return 0


def cmd_refresh(session: BookkeeperSession, args) -> int:
    state = session.state
    if state.cex_configs:
        cex = BalanceService.refresh_cex(state.cex_configs, previous=state.cex_data)
        session.set_cex_data(cex)
        print(f"Exchanges: {_fmt(cex.total_usd)} USD ({len(cex.failed)} failed)")
    if state.wallets:
        chain = BalanceService.refresh_wallets(state.wallets, previous=state.chain_data)
        session.set_chain_data(chain)
        print(f"Wallets:   {_fmt(chain.total_usd)} USD ({len(chain.failed)} failed)")
    if state.monitored_coins:
        quotes = PriceService.fetch_coin_quotes(c.id for c in state.monitored_coins)
        if quotes:
            session.update_prices(quotes)
        print(f"Prices:    {len(quotes)} quote(s)")
    return 0


def cmd_allocation(session: BookkeeperSession, args) -> int:
    result = PortfolioService.allocation(session.state.cex_data, session.state.manual_assets,
                                         threshold=args.threshold)
    for token in result.tokens:
        print(f"{token.symbol:<8} {_fmt(token.amount, 6):>18} {_fmt(token.value):>14}  {token.share_pct:5.1f}%")
    print(f"Total {_fmt(result.total_value)}  (hidden small positions {_fmt(result.hidden_value)})")
    return 0


def _date_arg(text: str) -> str:
    try:
        parse_datetime(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {text!r}, expected YYYY-MM-DD")
    return text


def _month_arg(text: str) -> str:
    try:
        return datetime.strptime(text, "%Y-%m").strftime("%Y-%m")
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid month {text!r}, expected YYYY-MM")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crypto-bookkeeper", description="Crypto trade bookkeeping")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("stats", help="Volume, fee and PnL totals over active legs")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("list", help="List trade pairs")
    p.add_argument("--trash", action="store_true", help="Show the recycle bin instead")
    p.add_argument("--coin")
    p.add_argument("--platform")
    p.add_argument("--pnl", choices=[s.value for s in PnLSign], default=PnLSign.ALL.value)
    p.add_argument("--min-apr", type=float)
    p.add_argument("--max-apr", type=float)
    p.add_argument("--range", choices=[t.value for t in TimeRangeType], default=TimeRangeType.ALL.value)
    p.add_argument("--year", type=int, choices=range(1, 10000), metavar="YYYY")
    p.add_argument("--month", type=int, choices=range(1, 13), metavar="1-12")
    p.add_argument("--start", type=_date_arg, help="Custom range start date (YYYY-MM-DD)")
    p.add_argument("--end", type=_date_arg, help="Custom range end date, inclusive")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("import-csv", help="Import transactions from CSV")
    p.add_argument("file")
    p.set_defaults(func=cmd_import_csv)

    p = sub.add_parser("export-csv", help="Export transactions to CSV")
    p.add_argument("file")
    p.add_argument("--include-deleted", action="store_true")
    p.set_defaults(func=cmd_export_csv)

    p = sub.add_parser("csv-template", help="Write an example CSV file")
    p.add_argument("file")
    p.set_defaults(func=cmd_csv_template)

    p = sub.add_parser("backup-export", help="Write a JSON backup")
    p.add_argument("file")
    p.set_defaults(func=cmd_backup_export)

    p = sub.add_parser("backup-import", help="Restore a JSON backup (replaces current data)")
    p.add_argument("file")
    p.set_defaults(func=cmd_backup_import)

    p = sub.add_parser("calendar", help="Daily realized PnL for a month")
    p.add_argument("--year", type=int, choices=range(1, 10000), metavar="YYYY")
    p.add_argument("--month", type=int, choices=range(1, 13), metavar="1-12")
    p.set_defaults(func=cmd_calendar)

    p = sub.add_parser("fiat", help="Fiat deposits and withdrawals")
    p.add_argument("--month", type=_month_arg, help="YYYY-MM")
    p.set_defaults(func=cmd_fiat)

    p = sub.add_parser("refresh", help="Refresh exchange, wallet and price data")
    p.set_defaults(func=cmd_refresh)

    p = sub.add_parser("allocation", help="Token allocation across exchanges")
    p.add_argument("--threshold", type=float, help="Hide tokens worth less than this (USD)")
    p.set_defaults(func=cmd_allocation)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    init_db()
    session = BookkeeperSession.load()
    try:
        return args.func(session, args)
    except BookkeeperError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
