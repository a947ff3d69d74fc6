#!/usr/bin/env python3
"""Command-line runner for the replenishment optimizer."""

from __future__ import annotations
import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from optimizer import (
    apply_preset,
    compare_scenarios,
    comparison_frame,
    generate_narrative,
    generate_recommendations,
    recommendations_frame,
)
from optimizer_config import (
    load_config,
    optimization_inputs,
    scenario_adjustments,
    simulation_options,
)

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "variant_sku",
    "safety_stock",
    "reorder_point",
    "min_stock",
    "max_stock",
    "economic_order_quantity",
    "fill_rate",
    "total_cost",
    "mc_average_fill_rate",
    "mc_stockout_probability",
]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inventory replenishment optimizer")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def _common(p: argparse.ArgumentParser) -> None:
        p.add_argument("config", type=Path, help="Path to JSON config file")
        p.add_argument("--iterations", type=int, default=None, help="Monte Carlo iterations")
        p.add_argument("--seed", type=int, default=None, help="Random seed (0 = fresh)")
        p.add_argument("--workers", type=int, default=None, help="Worker threads")
        p.add_argument("--out", type=Path, default=Path("outputs"), help="Output directory")
        p.add_argument("--json", action="store_true", help="Print the JSON payload instead of tables")

    rec = sub.add_parser("recommend", help="Policies, KPIs and simulation for every item")
    _common(rec)

    cmp_ = sub.add_parser("compare", help="Baseline vs what-if scenarios for one item")
    _common(cmp_)
    cmp_.add_argument("--sku", required=True, help="Item SKU to compare")
    cmp_.add_argument("--preset", action="append", default=[], help="Add a scenario preset")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    cfg = load_config(args.config)
    if args.iterations is not None:
        cfg["Simulation"]["iterations"] = int(args.iterations)
    if args.seed is not None:
        cfg["Simulation"]["seed"] = int(args.seed)
    if args.workers is not None:
        cfg["Simulation"]["max_workers"] = int(args.workers)

    options = simulation_options(cfg)
    workers = int(cfg["Simulation"].get("max_workers", 1))
    items = optimization_inputs(cfg)
    args.out.mkdir(parents=True, exist_ok=True)

    if args.command == "recommend":
        result = generate_recommendations(items, options, max_workers=workers)
        logger.info("Generated %d recommendations", len(result.policies))
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
            return
        df = recommendations_frame(result)
        print("Recommendations:")
        if not df.empty:
            print(df[SUMMARY_COLUMNS].to_string(index=False))
        out_path = args.out / "recommendations.csv"
        df.to_csv(out_path, index=False)
        print(f"Saved recommendations → {out_path}")
        return

    baseline = next((item for item in items if item.variant_sku == args.sku), None)
    if baseline is None:
        parser.error(f"SKU '{args.sku}' not found in config Items")
    try:
        presets = [apply_preset(name) for name in args.preset]
    except KeyError as exc:
        parser.error(str(exc.args[0]))
    adjustments = scenario_adjustments(cfg) + presets

    comparison = compare_scenarios(baseline, adjustments, options, max_workers=workers)
    logger.info("Compared %d scenarios for %s", len(comparison.alternatives), args.sku)
    if args.json:
        print(json.dumps(comparison.to_dict(), indent=2))
        return
    df = comparison_frame(comparison)
    cols = ["scenario"] + SUMMARY_COLUMNS[1:] + ["total_cost_delta", "fill_rate_delta"]
    print(f"Scenario comparison — {args.sku}:")
    print(df[cols].to_string(index=False))
    for outcome in comparison.alternatives:
        story = generate_narrative(comparison.baseline, outcome)
        print(f"- {story['headline']}")
        for line in story["details"]:
            print(f"    {line}")
    out_path = args.out / "scenario_compare.csv"
    df.to_csv(out_path, index=False)
    print(f"Saved comparison → {out_path}")


if __name__ == "__main__":
    main()
