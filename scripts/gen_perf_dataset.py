#!/usr/bin/env python3
"""Synthetic workbook generator for import performance runs.

Layout of every generated sheet:
- Row 1: title row (header auto-detection skips it)
- Row 2: header row, names chosen so that the mapping generator infers
  VARCHAR / INT / DECIMAL / DATE types
- Row 3+: data rows

Optionally every n-th data row starts a two-row vertical merge in column A,
which exercises merge resolution and the split_each_row switch.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from openpyxl import Workbook

HEADERS = ("客户编号", "客户名称", "数量", "价格", "销售日期", "备注")


def generate_rows(rows: int, seed: int = 42) -> pd.DataFrame:
    """Mixed-type data matching HEADERS."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range("2023-01-01", "2024-12-31", periods=365)
    return pd.DataFrame(
        {
            "客户编号": [f"C{i:07d}" for i in range(1, rows + 1)],
            "客户名称": [f"Customer_{rng.integers(1000, 9999)}" for _ in range(rows)],
            "数量": rng.integers(1, 1000, rows).tolist(),
            "价格": np.round(rng.uniform(0.01, 9999.99, rows), 2).tolist(),
            "销售日期": [d.date() for d in pd.to_datetime(rng.choice(dates.values, rows))],
            "备注": rng.choice(["", "vip", "new", "返品"], rows).tolist(),
        }
    )


def create_workbook(
    output_path: Path,
    rows: int,
    sheets: list[str] | None = None,
    title: str = "Performance Test Data",
    merge_every: int = 0,
    seed: int = 42,
) -> None:
    if sheets is None:
        sheets = ["Sheet1"]
    output_path.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    wb.remove(wb.active)
    frame = generate_rows(rows, seed)
    for sheet_name in sheets:
        ws = wb.create_sheet(sheet_name)
        ws.append([title])
        ws.append(list(HEADERS))
        for record in frame.itertuples(index=False):
            ws.append([_cell(v) for v in record])
        if merge_every > 0:
            # 3 行目がデータ先頭
            for r in range(3, rows + 2, merge_every):
                ws.merge_cells(start_row=r, start_column=1, end_row=r + 1, end_column=1)
    wb.save(output_path)

    print(f"Created workbook: {output_path}")
    print(f"  Sheets: {len(sheets)} ({', '.join(sheets)})")
    print(f"  Rows per sheet: {rows} (+ title and header rows)")
    if merge_every:
        print(f"  Vertical merges: every {merge_every} rows")


def _cell(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    return value if value != "" else None


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate synthetic workbooks for xlport import performance runs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/perf.xlsx --rows 50000
  %(prog)s data/merged.xlsx --rows 10000 --merge-every 50
  %(prog)s data/multi.xlsx --rows 20000 --sheets Orders Returns
        """,
    )
    parser.add_argument("output", type=Path, help="Output .xlsx path")
    parser.add_argument("--rows", type=int, default=50_000, help="Data rows per sheet (default: 50,000)")
    parser.add_argument("--sheets", nargs="+", default=["Sheet1"], help="Sheet names (default: Sheet1)")
    parser.add_argument("--title", default="Performance Test Data", help="Title row text")
    parser.add_argument("--merge-every", type=int, default=0, help="Start a 2-row merge in column A every N rows")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--dry-run", action="store_true", help="Show the plan without writing")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if args.merge_every < 0 or args.merge_every == 1:
        print("Error: --merge-every must be 0 or >= 2", file=sys.stderr)
        return 1

    print("Dataset generation plan:")
    print(f"  Output file: {args.output}")
    print(f"  Sheets: {len(args.sheets)} ({', '.join(args.sheets)})")
    print(f"  Rows per sheet: {args.rows:,}")
    print(f"  Random seed: {args.seed}")
    if args.dry_run:
        print("\n[DRY RUN] Would generate files but not creating them.")
        return 0

    try:
        create_workbook(args.output, args.rows, args.sheets, args.title, args.merge_every, args.seed)
    except OSError as e:
        print(f"\nError generating dataset: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
