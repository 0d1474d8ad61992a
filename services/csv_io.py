"""
CSV import/export of transactions.
Uses pandas for reading and writing; the Fills column carries an inline
"<date> | <amount> @ <price>; ..." list (a JSON array is also accepted).
"""

import csv
import io
import json
import logging
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from models import Fill, Transaction, TransactionType
from services.common import normalize_pair, normalize_platform, parse_datetime, parse_number, to_iso
from services.exceptions import CsvImportError
from services.fills import aggregate_fills, fills_match_totals

logger = logging.getLogger(__name__)

CSV_COLUMNS = ['Date', 'Type', 'Platform', 'Pair', 'Amount', 'Price', 'Fee', 'PnL', 'APR', 'Notes', 'Link', 'Fills']
REQUIRED_COLUMNS = ['Date', 'Type', 'Platform', 'Pair', 'Amount', 'Price']

TEMPLATE_ROWS = [
    {
        'Date': '2025-01-15', 'Type': 'Buy', 'Platform': 'Binance', 'Pair': 'BTC/USDT',
        'Amount': '0.5', 'Price': '45000', 'Fee': '22.5', 'Notes': 'First purchase',
        'Link': 'https://...', 'Fills': '',
    },
    {
        'Date': '2025-01-16', 'Type': 'Sell', 'Platform': 'Binance', 'Pair': 'BTC/USDT',
        'Amount': '1.5', 'Price': '46000', 'Fee': '23', 'Notes': 'Multiple sells', 'Link': '',
        'Fills': '2025-01-16 | 0.5 @ 45800; 2025-01-16 | 0.5 @ 46000; 2025-01-16 | 0.5 @ 46200',
    },
]


def format_number(value: Optional[float]) -> str:
    """Shortest text for a number: integers without a trailing .0, empty for None."""
    if value is None:
        return ''
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_fills(fills: Optional[Iterable[Fill]]) -> str:
    """Render fills as '<date> | <amount> @ <price>; ...'."""
    if not fills:
        return ''
    return '; '.join(f"{f.date} | {format_number(f.amount)} @ {format_number(f.price)}" for f in fills)


def parse_fills(text: str) -> List[Fill]:
    """
    Parse a Fills cell.

    Raises:
        ValueError: when an entry does not follow the grammar
    """
    text = (text or '').strip()
    if not text:
        return []

    if text.startswith('[') and text.endswith(']'):
        parsed = json.loads(text)
        if not isinstance(parsed, list):
            raise ValueError("Fills JSON must be an array")
        return [Fill.model_validate(item) for item in parsed]

    fills = []
    for item in text.split(';'):
        if not item.strip():
            continue
        date_part, sep, rest = item.partition('|')
        amount_part, at, price_part = rest.partition('@')
        amount = parse_number(amount_part)
        price = parse_number(price_part)
        if not sep or not at or not date_part.strip() or amount is None or price is None:
            raise ValueError(f"Invalid fill entry {item.strip()!r}")
        fills.append(Fill(date=date_part.strip(), amount=amount, price=price))
    return fills


def transactions_to_dataframe(transactions: Iterable[Transaction]) -> pd.DataFrame:
    rows = []
    for tx in transactions:
        rows.append({
            'Date': parse_datetime(tx.date).strftime('%Y-%m-%d %H:%M'),
            'Type': tx.type,
            'Platform': tx.platform,
            'Pair': tx.pair,
            'Amount': format_number(tx.amount),
            'Price': format_number(tx.price),
            'Fee': format_number(tx.fee or 0),
            'PnL': format_number(tx.pnl) if tx.pnl else '',
            'APR': format_number(tx.apr) if tx.apr else '',
            'Notes': tx.notes or '',
            'Link': tx.link or '',
            'Fills': format_fills(tx.fills),
        })
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def export_transactions_csv(transactions: Iterable[Transaction]) -> str:
    """Serialize legs to CSV text with the standard column set."""
    return transactions_to_dataframe(transactions).to_csv(index=False, lineterminator='\n')


def template_csv() -> str:
    """Example file showing the expected columns and the Fills syntax."""
    df = pd.DataFrame(TEMPLATE_ROWS, columns=[c for c in CSV_COLUMNS if c not in ('PnL', 'APR')])
    return df.to_csv(index=False, lineterminator='\n')


def _record_lines(text: str, first_line: int) -> List[int]:
    """File line each data record starts on; quoted cells may span lines."""
    reader = csv.reader(io.StringIO(text), skipinitialspace=True)
    starts = []
    next_line = first_line
    for _ in reader:
        starts.append(next_line)
        next_line = first_line + reader.line_num
    return starts[1:]


def _read_frame(csv_text: str) -> Tuple[pd.DataFrame, List[int]]:
    if not csv_text or not csv_text.strip():
        raise CsvImportError("CSV file is empty or invalid")
    text = csv_text.strip()
    # leading blank lines still count towards file line numbers
    first_line = 1 + csv_text[:len(csv_text) - len(csv_text.lstrip())].count('\n')
    try:
        # blank lines stay as empty records so positions line up with _record_lines
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=False,
        )
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise CsvImportError(f"CSV file is empty or invalid: {e}") from e
    df.columns = [str(c).strip() for c in df.columns]
    lines = _record_lines(text, first_line)
    filled = [any(str(v).strip() for v in values) for values in df.itertuples(index=False)]
    if not any(filled):
        raise CsvImportError("CSV file is empty or invalid")
    df = df.loc[filled].reset_index(drop=True)
    return df, [line for line, keep in zip(lines, filled) if keep]


def _row_to_transaction(row: dict, row_number: int) -> Transaction:
    def field(name: str) -> str:
        return str(row.get(name, '') or '').strip()

    date_text, tx_type = field('Date'), field('Type')
    platform, pair = field('Platform'), field('Pair')
    amount_text, price_text = field('Amount'), field('Price')
    if not all([date_text, tx_type, platform, pair, amount_text, price_text]):
        raise CsvImportError("Missing required fields", row_number)
    if tx_type not in (TransactionType.BUY.value, TransactionType.SELL.value):
        raise CsvImportError("Type must be 'Buy' or 'Sell'", row_number)

    amount = parse_number(amount_text)
    price = parse_number(price_text)
    if amount is None or price is None:
        raise CsvImportError("Amount and Price must be valid numbers", row_number)
    fee_text = field('Fee')
    fee = parse_number(fee_text) if fee_text else 0.0
    if fee is None:
        raise CsvImportError("Fee must be a valid number", row_number)
    try:
        date_iso = to_iso(date_text)
    except ValueError as e:
        raise CsvImportError(f"Invalid date {date_text!r}", row_number) from e

    fills: Optional[List[Fill]] = None
    fills_text = field('Fills')
    if fills_text:
        try:
            fills = parse_fills(fills_text) or None
        except Exception as e:
            logger.warning(f"Row {row_number}: ignoring invalid Fills cell: {e}")
            fills = None
    if fills:
        agg = aggregate_fills(fills)
        if not agg.is_empty:
            if not fills_match_totals(fills, amount, price):
                logger.warning(
                    f"Row {row_number}: Amount/Price differ from fills, using fill totals "
                    f"({agg.total_amount} @ {agg.weighted_average_price})"
                )
            amount, price = agg.total_amount, agg.weighted_average_price

    try:
        return Transaction(
            date=date_iso,
            type=tx_type,
            platform=normalize_platform(platform),
            pair=normalize_pair(pair),
            amount=amount,
            price=price,
            fee=fee,
            notes=field('Notes'),
            link=field('Link'),
            fills=fills,
        )
    except ValueError as e:
        raise CsvImportError(f"Invalid record: {e}", row_number) from e


def parse_transactions_csv(csv_text: str) -> List[Transaction]:
    """
    Parse CSV text into new legs (fresh ids, not yet paired or stored).

    Raises:
        CsvImportError: missing columns, or any row that fails validation;
            nothing from the file should be imported in that case
    """
    df, lines = _read_frame(csv_text)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise CsvImportError(f"Missing required fields: {', '.join(missing)}")

    transactions = []
    for row, line in zip(df.to_dict(orient='records'), lines):
        transactions.append(_row_to_transaction(row, line))
    return transactions
