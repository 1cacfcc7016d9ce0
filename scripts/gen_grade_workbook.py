#!/usr/bin/env python3
"""Generate synthetic grade workbooks for manual and performance checks.

Layout matches what the bulk upload expects:
- Row 1: header (ignored by the importer)
- Row 2+: student_code, student_name, national_id, grade

Optional fault injection adds duplicate codes, blank national ids and
non-numeric grades so the rejection path can be exercised too.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

HEADER = ["student_code", "student_name", "national_id", "grade"]

FIRST_NAMES = ["Ali", "Sara", "Omar", "Lina", "Yusuf", "Huda", "Karim", "Mona", "Tariq", "Noor"]
LAST_NAMES = ["Hassan", "Saleh", "Nasser", "Khalil", "Fares", "Aziz", "Mansour", "Haddad"]


def generate_rows(rows: int, seed: int = 42, faults: int = 0, grade_max: int = 30) -> pd.DataFrame:
    """Build a DataFrame of ``rows`` students; ``faults`` rows are corrupted."""
    rng = np.random.default_rng(seed)
    codes = [f"S{i:05d}" for i in range(1, rows + 1)]
    names = [
        f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}"
        for _ in range(rows)
    ]
    # 14-digit national ids, unique per row
    base = 10_000_000_000_000
    national_ids = [str(base + int(n)) for n in rng.choice(89_999_999_999_999, size=rows, replace=False)]
    grades: list[object] = rng.integers(0, grade_max + 1, size=rows).tolist()

    df = pd.DataFrame({
        "student_code": codes,
        "student_name": names,
        "national_id": national_ids,
        "grade": grades,
    }, dtype=object)

    if faults > 0 and rows > 1:
        victims = rng.choice(np.arange(1, rows), size=min(faults, rows - 1), replace=False)
        for n, idx in enumerate(victims):
            kind = n % 3
            if kind == 0:
                df.at[idx, "student_code"] = df.at[0, "student_code"]
            elif kind == 1:
                df.at[idx, "national_id"] = None
            else:
                df.at[idx, "grade"] = "absent"
    return df


def write_workbook(df: pd.DataFrame, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name="Grades", header=HEADER, index=False)
    return path


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Generate a synthetic grade workbook")
    p.add_argument("output", type=Path, help="Output .xlsx path")
    p.add_argument("--rows", type=int, default=100)
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--faults", type=int, default=0, help="Number of rows to corrupt")
    p.add_argument("--grade-max", type=int, default=30)
    args = p.parse_args(argv)

    if args.output.suffix.lower() != ".xlsx":
        print("output must end with .xlsx", file=sys.stderr)
        return 1
    if args.rows < 1:
        print("--rows must be >= 1", file=sys.stderr)
        return 1

    df = generate_rows(args.rows, seed=args.seed, faults=args.faults, grade_max=args.grade_max)
    path = write_workbook(df, args.output)
    print(f"wrote {len(df)} rows to {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
