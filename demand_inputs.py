"""Build optimizer inputs from demand history and stock snapshots.

The persistence layer hands over plain rows; this module turns them into
``OptimizationInput`` records:

    avg_daily_demand = mean(monthly demand totals) / days_per_month
    demand_std_dev   = sample_std(monthly demand totals) / days_per_month

Forecasting is not done here. When a variant has no history, an externally
supplied forecast (``forecast_quantities``) is averaged instead.
"""

from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from optimizer_config import DEFAULT_CONFIG
from optimizer_core import OptimizationInput, round_half_away

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = ("date", "quantity")
STOCK_COLUMNS = ("quantity", "reserved_quantity", "min_stock_level")


def demand_standard_deviation(values: Sequence[float]) -> float:
    data = np.asarray(list(values), dtype=float)
    if data.size < 2:
        return 0.0
    return float(np.std(data, ddof=1))


def monthly_demand(history: Optional[pd.DataFrame]) -> pd.Series:
    """Total demand per calendar month, oldest first."""
    if history is None or history.empty:
        return pd.Series(dtype=float)
    missing = [c for c in HISTORY_COLUMNS if c not in history.columns]
    if missing:
        raise KeyError(f"Demand history is missing columns {missing}")
    dates = pd.to_datetime(history["date"])
    totals = history["quantity"].astype(float).groupby(dates.dt.to_period("M")).sum()
    return totals.sort_index()


def resolve_service_level(
    abc_class: Optional[str],
    class_levels: Optional[Mapping[str, float]],
    fallback: float,
) -> float:
    if not abc_class or not class_levels:
        return fallback
    return float(class_levels.get(abc_class.upper(), fallback))


def _resolve_lead_time(
    override: Optional[int],
    variant: Mapping,
    aggregate_lead_times: Optional[Sequence[float]],
    default: int,
) -> int:
    if override is not None:
        return int(override)
    if variant.get("lead_time_days") is not None:
        return int(variant["lead_time_days"])
    if aggregate_lead_times:
        return int(round(float(np.mean(aggregate_lead_times))))
    return int(default)


def _stock_totals(stocks: Optional[pd.DataFrame]) -> Dict[str, float]:
    if stocks is None or stocks.empty:
        return {"on_hand": 0.0, "reserved": 0.0, "min_stock_level": 0.0}
    missing = [c for c in STOCK_COLUMNS if c not in stocks.columns]
    if missing:
        raise KeyError(f"Stock rows are missing columns {missing}")
    return {
        "on_hand": float(stocks["quantity"].sum()),
        "reserved": float(stocks["reserved_quantity"].sum()),
        "min_stock_level": float(stocks["min_stock_level"].mean()),
    }


def build_optimization_input(
    variant: Mapping,
    history: Optional[pd.DataFrame],
    stocks: Optional[pd.DataFrame] = None,
    *,
    forecast_quantities: Optional[Sequence[float]] = None,
    aggregate_lead_times: Optional[Sequence[float]] = None,
    abc_class: Optional[str] = None,
    defaults: Optional[Mapping] = None,
    lead_time_days: Optional[int] = None,
    review_period_days: Optional[int] = None,
    service_level: Optional[float] = None,
    holding_cost_rate: Optional[float] = None,
    ordering_cost: Optional[float] = None,
    stockout_cost: Optional[float] = None,
) -> OptimizationInput:
    """Aggregate one variant's history and stock rows into an optimizer input.

    Parameters
    ----------
    variant : Mapping
        ``variant_id`` and ``variant_sku`` are required; ``product_name``,
        ``unit_price``, ``currency``, ``lead_time_days``, ``reorder_point``,
        ``reorder_quantity``, ``abc_class`` and ``aggregate_lead_times`` are
        optional.
    history : DataFrame, optional
        Demand observations with ``date`` and ``quantity`` columns.
    stocks : DataFrame, optional
        Per-warehouse rows with ``quantity``, ``reserved_quantity`` and
        ``min_stock_level``.
    forecast_quantities : sequence of float, optional
        Externally forecast monthly quantities, used only without history.
    defaults : Mapping, optional
        Overrides for ``DEFAULT_CONFIG["Defaults"]``.

    The remaining keyword arguments are request-level overrides and win over
    every variant-level or default value.
    """

    cfg = dict(DEFAULT_CONFIG["Defaults"])
    if defaults:
        cfg.update(defaults)
    days_per_month = float(cfg["days_per_month"])

    monthly = monthly_demand(history)
    if not monthly.empty:
        average_monthly = float(monthly.mean())
    elif forecast_quantities:
        logger.debug("No demand history for %s, using supplied forecast", variant.get("variant_sku"))
        average_monthly = float(np.sum(forecast_quantities)) / max(1, len(forecast_quantities))
    else:
        average_monthly = 0.0

    average_daily = average_monthly / days_per_month
    std_dev = demand_standard_deviation(monthly.to_numpy()) / days_per_month

    leads = aggregate_lead_times if aggregate_lead_times is not None else variant.get("aggregate_lead_times")
    lead_time = _resolve_lead_time(lead_time_days, variant, leads, cfg["lead_time_days"])
    review_period = int(review_period_days if review_period_days is not None else cfg["review_period_days"])

    if service_level is None:
        service_level = resolve_service_level(
            abc_class or variant.get("abc_class"),
            cfg.get("abc_service_levels"),
            float(cfg["service_level"]),
        )

    price = variant.get("unit_price")
    if stockout_cost is None:
        reference_price = float(cfg["fallback_unit_price"]) if price is None else float(price)
        stockout_cost = max(float(cfg["min_stockout_cost"]), reference_price * float(cfg["stockout_price_multiplier"]))

    totals = _stock_totals(stocks)

    return OptimizationInput(
        variant_id=int(variant["variant_id"]),
        variant_sku=str(variant["variant_sku"]),
        product_name=str(variant.get("product_name") or ""),
        on_hand=totals["on_hand"],
        reserved=totals["reserved"],
        available=totals["on_hand"] - totals["reserved"],
        average_daily_demand=round_half_away(average_daily, 4),
        demand_std_dev=round_half_away(max(0.01, std_dev), 4),
        lead_time_days=lead_time,
        review_period_days=review_period,
        unit_price=0.0 if price is None else float(price),
        currency=str(variant.get("currency") or cfg["currency"]),
        holding_cost_rate=float(cfg["holding_cost_rate"] if holding_cost_rate is None else holding_cost_rate),
        ordering_cost=float(cfg["ordering_cost"] if ordering_cost is None else ordering_cost),
        service_level=float(service_level),
        stockout_cost=float(stockout_cost),
        min_stock_level=round_half_away(totals["min_stock_level"], 2),
        configured_reorder_point=variant.get("reorder_point"),
        configured_reorder_quantity=variant.get("reorder_quantity"),
    )


def build_optimization_inputs(
    variants: Iterable[Mapping],
    history: Optional[pd.DataFrame],
    stocks: Optional[pd.DataFrame] = None,
    **kwargs,
) -> List[OptimizationInput]:
    """Batch form of ``build_optimization_input``; rows are split on ``variant_id``."""

    def _rows_for(df: Optional[pd.DataFrame], variant_id: int) -> Optional[pd.DataFrame]:
        if df is None or df.empty:
            return None
        if "variant_id" not in df.columns:
            raise KeyError("Batch rows require a 'variant_id' column")
        return df[df["variant_id"] == variant_id]

    inputs: List[OptimizationInput] = []
    for variant in variants:
        vid = int(variant["variant_id"])
        inputs.append(
            build_optimization_input(
                variant,
                _rows_for(history, vid),
                _rows_for(stocks, vid),
                **kwargs,
            )
        )
    return inputs


__all__ = [
    "build_optimization_input",
    "build_optimization_inputs",
    "demand_standard_deviation",
    "monthly_demand",
    "resolve_service_level",
]
