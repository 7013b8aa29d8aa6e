#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import random
from datetime import date, timedelta
from pathlib import Path

DEPARTMENTS = ["Production", "Quality", "Packaging", "Logistics"]
FORMS = ["Production Record", "Batch Release", "QC Checklist", "Material Transfer"]
ERROR_TYPES = ["Missing Signature", "Incorrect Information", "Incomplete Form", "Late Submission"]
ISSUE_TYPES = ["Documentation", "Quality", "Delivery", "Packaging"]
STAGES = ["Bulk Receipt", "Assembly", "PCI Review", "NN Review", "Packaging", "Final Review", "Release"]


def _internal(rng: random.Random, index: int, day: date, lot: str) -> dict:
    passed = rng.random() < 0.9
    row = {
        "id": f"INT-{index:05d}",
        "date": day.isoformat(),
        "lot": lot,
        "status": "Pass" if passed else "Fail",
        "department": rng.choice(DEPARTMENTS),
        "form": rng.choice(FORMS),
    }
    if not passed:
        row["errorType"] = rng.choice(ERROR_TYPES)
    return row


def _external(rng: random.Random, index: int, day: date, lot: str) -> dict:
    return {
        "id": f"EXT-{index:05d}",
        "date": day.isoformat(),
        "lot": lot,
        "status": "Closed" if rng.random() < 0.85 else "Open",
        "department": rng.choice(DEPARTMENTS),
        "issueType": rng.choice(ISSUE_TYPES),
        "sentiment": round(rng.uniform(-1, 0.6), 2),
    }


def _process(rng: random.Random, index: int, day: date, lot: str, stage: str) -> dict:
    return {
        "id": f"PRC-{index:05d}",
        "date": day.isoformat(),
        "lot": lot,
        "status": "Pass" if rng.random() < 0.92 else "Fail",
        "department": "Production",
        "stage": stage,
        "durationHours": round(rng.uniform(0.5, 4.0), 1),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate raw internal/external/process record files")
    parser.add_argument("--output", required=True, help="Target directory for the JSON files")
    parser.add_argument("--start", default="2025-01-01", help="First record date, YYYY-MM-DD")
    parser.add_argument("--months", type=int, default=6, help="Number of months to cover")
    parser.add_argument("--lots", type=int, default=20, help="Number of lots")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    args = parser.parse_args()

    rng = random.Random(args.seed)
    start = date.fromisoformat(args.start)
    span = args.months * 30
    lots = [f"B{1001 + offset}" for offset in range(args.lots)]

    internal, external, process = [], [], []
    for offset, lot in enumerate(lots):
        day = start + timedelta(days=(offset * span) // max(len(lots), 1))
        for _ in range(3):
            internal.append(_internal(rng, len(internal) + 1, day, lot))
        if rng.random() < 0.6:
            external.append(_external(rng, len(external) + 1, day, lot))
        for stage in STAGES:
            process.append(_process(rng, len(process) + 1, day, lot, stage))

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    for name, rows in (("internal.json", internal), ("external.json", external), ("process.json", process)):
        with (output / name).open("w", encoding="utf-8") as fp:
            json.dump({"records": rows}, fp, ensure_ascii=False, indent=2)

    print(f"Sample records written to {output}: {len(internal)} internal, {len(external)} external, {len(process)} process")


if __name__ == "__main__":
    main()
