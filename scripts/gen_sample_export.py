#!/usr/bin/env python3
"""Synthetic trade export generator for performance testing.

Writes a semicolon separated file laid out like a NinjaTrader 8 "Trades"
grid export: header on line 1, one closed trade per line, comma decimals,
currency cells such as "$ 62,50" / "-$ 200,00", month-first timestamps and a
trailing delimiter on every line.

Optionally repeats a share of the rows to exercise duplicate detection.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

COLUMNS = [
    "Trade number", "Instrument", "Account", "Strategy", "Market pos.", "Qty",
    "Entry price", "Exit price", "Entry time", "Exit time", "Entry name", "Exit name",
    "Profit", "Commission", "MAE", "MFE", "Bars",
]

# root -> (contract label, tick size, point value, typical price)
INSTRUMENTS = {
    "ES": ("ES 03-25", 0.25, 50.0, 5900.0),
    "MES": ("MES 03-25", 0.25, 5.0, 5900.0),
    "NQ": ("NQ 03-25", 0.25, 20.0, 20800.0),
    "MNQ": ("MNQ 03-25", 0.25, 2.0, 20800.0),
    "CL": ("CL 02-25", 0.01, 1000.0, 72.0),
}
STRATEGIES = ["Breakout", "Mean reversion", "Opening range", ""]


def _money(value: float) -> str:
    sign = "-" if value < 0 else ""
    whole, cents = f"{abs(value):.2f}".split(".")
    return f"{sign}$ {whole},{cents}"


def _decimal(value: float, places: int = 2) -> str:
    return f"{value:.{places}f}".replace(".", ",")


def _timestamp(ts: pd.Timestamp) -> str:
    return f"{ts.month}/{ts.day}/{ts.year} {ts.hour}:{ts.minute:02d}:{ts.second:02d}"


def generate_trades(rows: int, seed: int = 42, duplicate_ratio: float = 0.0) -> pd.DataFrame:
    """Generate `rows` export lines; `duplicate_ratio` of them repeat earlier lines."""
    rng = np.random.default_rng(seed)
    unique_rows = max(1, rows - int(rows * duplicate_ratio))

    roots = rng.choice(list(INSTRUMENTS), unique_rows)
    longs = rng.random(unique_rows) < 0.5
    qty = rng.integers(1, 6, unique_rows)
    # fixed past start (no contract-year correction), spaced wider than the duplicate tolerance
    entry = pd.Timestamp("2024-03-04 09:30:00") + pd.to_timedelta(np.arange(unique_rows) * 7, unit="m")
    hold = pd.to_timedelta(rng.integers(30, 3600, unique_rows), unit="s")
    move_ticks = rng.integers(-40, 41, unique_rows)

    records: list[dict[str, str]] = []
    for i in range(unique_rows):
        label, tick, point_value, base = INSTRUMENTS[roots[i]]
        entry_price = round(base + rng.integers(-200, 200) * tick, 2)
        exit_price = round(entry_price + move_ticks[i] * tick, 2)
        points = (exit_price - entry_price) if longs[i] else (entry_price - exit_price)
        profit = round(points * point_value * qty[i], 2)
        mae = round(abs(min(points, 0.0)) + tick * rng.integers(0, 8), 2)
        mfe = round(max(points, 0.0) + tick * rng.integers(0, 8), 2)
        records.append({
            "Trade number": str(i + 1),
            "Instrument": label,
            "Account": "Sim101",
            "Strategy": STRATEGIES[i % len(STRATEGIES)],
            "Market pos.": "Long" if longs[i] else "Short",
            "Qty": str(qty[i]),
            "Entry price": _decimal(entry_price),
            "Exit price": _decimal(exit_price),
            "Entry time": _timestamp(entry[i]),
            "Exit time": _timestamp(entry[i] + hold[i]),
            "Entry name": "Entry",
            "Exit name": "Target" if profit > 0 else "Stop",
            "Profit": _money(profit),
            "Commission": _money(0.0),
            "MAE": _money(mae * point_value * qty[i]),
            "MFE": _money(mfe * point_value * qty[i]),
            "Bars": str(int(rng.integers(1, 30))),
        })

    df = pd.DataFrame.from_records(records, columns=COLUMNS)
    extra = rows - unique_rows
    if extra > 0:
        repeats = df.sample(n=extra, replace=True, random_state=seed)
        df = pd.concat([df, repeats], ignore_index=True)
    return df


def to_export_bytes(df: pd.DataFrame) -> bytes:
    # every line ends with a delimiter like the platform's own export
    lines = [";".join(df.columns) + ";"]
    lines.extend(";".join(row) + ";" for row in df.astype(str).itertuples(index=False, name=None))
    return ("\r\n".join(lines) + "\r\n").encode("utf-8-sig")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic trade export for performance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s trades.csv
  %(prog)s trades.csv --rows 20000 --duplicates 0.1
""",
    )
    parser.add_argument("output", type=Path, help="Output file path")
    parser.add_argument("--rows", type=int, default=5_000, help="Number of trade lines (default: 5,000)")
    parser.add_argument("--duplicates", type=float, default=0.0, help="Share of repeated lines, 0..1")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0.0 <= args.duplicates < 1.0:
        print("Error: --duplicates must be in [0, 1)", file=sys.stderr)
        return 1

    df = generate_trades(args.rows, args.seed, args.duplicates)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(to_export_bytes(df))
    print(f"Created export: {args.output}")
    print(f"  Rows: {len(df):,} (duplicates ~{int(args.rows * args.duplicates):,})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
