from __future__ import annotations
"""Public replenishment optimizer API.

Re-exports the core engine from ``optimizer_core`` and adds the pandas
reporting helpers consumed by dashboards, purchase planning and the CLI.
"""

from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from optimizer_core import (
    ADJUSTABLE_FIELDS,
    BASELINE_NAME,
    DEFAULT_SEED_SOURCE,
    SCENARIO_PRESETS,
    InvalidArgumentError,
    InvalidInputError,
    Kpi,
    MonteCarloSummary,
    OptimizationCancelled,
    OptimizationError,
    OptimizationInput,
    Policy,
    RecommendationResult,
    ScenarioAdjustment,
    ScenarioComparisonResult,
    ScenarioOutcome,
    SeedSource,
    SimulationOptions,
    VariantRef,
    apply_adjustment,
    apply_preset,
    calculate_policy,
    compare_scenarios,
    evaluate_kpis,
    generate_recommendations,
    run_monte_carlo,
    run_pipeline,
    validate_input,
)

SIMULATION_COMPLETED_EVENT = "analytics.simulation.completed"

KPI_COLUMNS = [
    "fill_rate",
    "stockout_risk",
    "average_inventory",
    "holding_cost",
    "ordering_cost",
    "total_cost",
]
MC_COLUMNS = [
    "mc_average_fill_rate",
    "mc_average_total_cost",
    "mc_stockout_probability",
]


def _outcome_row(policy: Policy, kpi: Kpi, summary: MonteCarloSummary) -> Dict:
    row = policy.to_dict()
    row.update(kpi.to_dict())
    row.update({
        "mc_iterations": summary.iterations,
        "mc_average_fill_rate": summary.average_fill_rate,
        "mc_average_total_cost": summary.average_total_cost,
        "mc_stockout_probability": summary.stockout_probability,
    })
    return row


def recommendations_frame(result: RecommendationResult) -> pd.DataFrame:
    """One row per SKU (sorted by SKU) with policy, KPI and simulation columns."""
    rows = [
        _outcome_row(policy, result.kpis[policy.variant_id], result.monte_carlo[policy.variant_id])
        for policy in result.policies
    ]
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows)
    df.sort_values(by="variant_sku", inplace=True, kind="stable")
    df.reset_index(drop=True, inplace=True)
    return df


def comparison_frame(result: ScenarioComparisonResult) -> pd.DataFrame:
    """Scenario table with ``Base`` first and deltas against it.

    Every KPI and Monte Carlo column ``c`` gains ``c_delta`` (scenario - base)
    and ``c_delta_pct`` (relative to base; NaN where base is zero).
    """

    rows = []
    for outcome in result.outcomes():
        row = {"scenario": outcome.name}
        row.update(_outcome_row(outcome.policy, outcome.kpi, outcome.monte_carlo))
        rows.append(row)
    df = pd.DataFrame(rows)
    base = df.iloc[0]

    for col in KPI_COLUMNS + MC_COLUMNS + ["safety_stock", "reorder_point", "economic_order_quantity"]:
        df[f"{col}_delta"] = df[col] - base[col]
        if base[col]:
            df[f"{col}_delta_pct"] = (df[col] - base[col]) / base[col]
        else:
            df[f"{col}_delta_pct"] = np.nan
    return df


def generate_narrative(
    baseline: ScenarioOutcome,
    scenario: ScenarioOutcome,
    *,
    service_target: Optional[float] = None,
) -> Dict[str, str | List[str]]:
    """Produce a lightweight textual summary comparing two scenario outcomes."""

    fr_delta = scenario.kpi.fill_rate - baseline.kpi.fill_rate
    cost_delta = scenario.kpi.total_cost - baseline.kpi.total_cost
    headline_parts = []

    if abs(fr_delta) >= 0.005:
        headline_parts.append(
            f"fill rate {('improves' if fr_delta >= 0 else 'drops')} by {abs(fr_delta)*100:.1f} pts"
        )
    if abs(cost_delta) >= 1.0:
        headline_parts.append(
            f"total cost {('up' if cost_delta > 0 else 'down')} {abs(cost_delta):.2f} {scenario.policy.currency}".rstrip()
        )
    if not headline_parts:
        headline = f"{scenario.name} performs similarly to {baseline.name}."
    else:
        headline = f"{scenario.name} vs {baseline.name}: " + ", ".join(headline_parts) + "."

    bullets: List[str] = []
    ss_delta = scenario.policy.safety_stock - baseline.policy.safety_stock
    if abs(ss_delta) >= 0.01:
        bullets.append(f"Safety stock {'↑' if ss_delta > 0 else '↓'}{abs(ss_delta):.2f}")
    rop_delta = scenario.policy.reorder_point - baseline.policy.reorder_point
    if abs(rop_delta) >= 0.01:
        bullets.append(f"Reorder point {'↑' if rop_delta > 0 else '↓'}{abs(rop_delta):.2f}")
    eoq_delta = scenario.policy.economic_order_quantity - baseline.policy.economic_order_quantity
    if abs(eoq_delta) >= 0.01:
        bullets.append(f"EOQ {'↑' if eoq_delta > 0 else '↓'}{abs(eoq_delta):.2f}")
    p_delta = scenario.monte_carlo.stockout_probability - baseline.monte_carlo.stockout_probability
    if abs(p_delta) >= 0.005:
        bullets.append(f"Simulated stockout probability: {'+' if p_delta >= 0 else ''}{p_delta*100:.1f} pts")

    if service_target is not None:
        fr = scenario.monte_carlo.average_fill_rate
        if fr < service_target:
            bullets.append(f"⚠ service target {service_target:.2f} unmet (simulated FR={fr:.2f}).")

    return {"headline": headline, "details": bullets}


def simulation_completed_event(
    comparison: ScenarioComparisonResult,
    source: str = "worker.analytics",
) -> Dict:
    """Integration-event payload announcing a finished baseline simulation."""
    base = comparison.baseline
    return {
        "event_name": SIMULATION_COMPLETED_EVENT,
        "generated_at": comparison.generated_at.isoformat(),
        "variant": {
            "variant_id": comparison.variant.variant_id,
            "variant_sku": comparison.variant.variant_sku,
            "product_name": comparison.variant.product_name,
        },
        "policy": base.policy.to_dict(),
        "kpis": base.kpi.to_dict(),
        "monte_carlo": base.monte_carlo.to_dict(),
        "source": source,
    }


__all__ = [
    "ADJUSTABLE_FIELDS",
    "BASELINE_NAME",
    "DEFAULT_SEED_SOURCE",
    "SCENARIO_PRESETS",
    "SIMULATION_COMPLETED_EVENT",
    "InvalidArgumentError",
    "InvalidInputError",
    "Kpi",
    "MonteCarloSummary",
    "OptimizationCancelled",
    "OptimizationError",
    "OptimizationInput",
    "Policy",
    "RecommendationResult",
    "ScenarioAdjustment",
    "ScenarioComparisonResult",
    "ScenarioOutcome",
    "SeedSource",
    "SimulationOptions",
    "VariantRef",
    "apply_adjustment",
    "apply_preset",
    "calculate_policy",
    "compare_scenarios",
    "comparison_frame",
    "evaluate_kpis",
    "generate_narrative",
    "generate_recommendations",
    "recommendations_frame",
    "run_monte_carlo",
    "run_pipeline",
    "simulation_completed_event",
    "validate_input",
]
