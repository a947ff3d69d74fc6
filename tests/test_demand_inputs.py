import pandas as pd
import pytest

from demand_inputs import (
    build_optimization_input,
    build_optimization_inputs,
    demand_standard_deviation,
    monthly_demand,
    resolve_service_level,
)


def _history(variant_id=None):
    df = pd.DataFrame(
        {
            "date": ["2025-01-05", "2025-01-20", "2025-02-03", "2025-03-15"],
            "quantity": [100, 200, 360, 240],
        }
    )
    if variant_id is not None:
        df["variant_id"] = variant_id
    return df


def _stocks(variant_id=None):
    df = pd.DataFrame(
        {
            "quantity": [60, 40],
            "reserved_quantity": [5, 15],
            "min_stock_level": [10, 21],
        }
    )
    if variant_id is not None:
        df["variant_id"] = variant_id
    return df


def test_demand_standard_deviation():
    assert demand_standard_deviation([]) == 0.0
    assert demand_standard_deviation([10]) == 0.0
    assert demand_standard_deviation([1, 2, 3, 4]) == pytest.approx(1.290994, abs=1e-6)


def test_monthly_demand_totals():
    totals = monthly_demand(_history())
    assert list(totals) == [300.0, 360.0, 240.0]
    assert monthly_demand(None).empty


def test_monthly_demand_requires_columns():
    with pytest.raises(KeyError):
        monthly_demand(pd.DataFrame({"quantity": [1, 2]}))


def test_resolve_service_level():
    levels = {"A": 0.98, "B": 0.95}
    assert resolve_service_level("b", levels, 0.9) == 0.95
    assert resolve_service_level("Z", levels, 0.9) == 0.9
    assert resolve_service_level(None, levels, 0.9) == 0.9


def test_build_input_from_history_and_stock():
    variant = {
        "variant_id": 1,
        "variant_sku": "SKU-1",
        "product_name": "Widget",
        "unit_price": 10.0,
        "abc_class": "a",
    }
    inp = build_optimization_input(variant, _history(), _stocks(), aggregate_lead_times=[5, 6, 7])
    assert inp.average_daily_demand == 10.0
    assert inp.demand_std_dev == 2.0
    assert inp.on_hand == 100.0
    assert inp.reserved == 20.0
    assert inp.available == 80.0
    assert inp.min_stock_level == 15.5
    assert inp.lead_time_days == 6
    assert inp.review_period_days == 30
    assert inp.service_level == 0.98
    assert inp.stockout_cost == 15.0
    assert inp.holding_cost_rate == 0.2
    assert inp.ordering_cost == 25.0
    assert inp.currency == "EUR"
    assert inp.configured_reorder_point is None


def test_build_input_falls_back_to_forecast():
    variant = {"variant_id": 2, "variant_sku": "SKU-2", "unit_price": 2.0}
    inp = build_optimization_input(variant, None, forecast_quantities=[300, 600])
    assert inp.average_daily_demand == 15.0
    assert inp.demand_std_dev == 0.01
    assert inp.lead_time_days == 14
    assert inp.stockout_cost == 5.0  # min stockout cost beats 2.0 * 1.5
    assert inp.available == 0.0


def test_build_input_without_price_or_demand():
    inp = build_optimization_input({"variant_id": 3, "variant_sku": "SKU-3"}, None)
    assert inp.unit_price == 0.0
    assert inp.average_daily_demand == 0.0
    assert inp.stockout_cost == 15.0  # fallback price 10 * 1.5
    assert inp.service_level == 0.92


def test_request_overrides_win():
    variant = {
        "variant_id": 4,
        "variant_sku": "SKU-4",
        "unit_price": 10.0,
        "lead_time_days": 9,
        "abc_class": "A",
        "reorder_point": 40,
        "reorder_quantity": 120,
    }
    inp = build_optimization_input(
        variant,
        _history(),
        lead_time_days=3,
        review_period_days=7,
        service_level=0.9,
        stockout_cost=1.0,
        defaults={"currency": "USD"},
    )
    assert inp.lead_time_days == 3
    assert inp.review_period_days == 7
    assert inp.service_level == 0.9
    assert inp.stockout_cost == 1.0
    assert inp.currency == "USD"
    assert inp.configured_reorder_point == 40
    assert inp.configured_reorder_quantity == 120


def test_variant_lead_time_beats_aggregates():
    variant = {"variant_id": 5, "variant_sku": "SKU-5", "lead_time_days": 9}
    inp = build_optimization_input(variant, None, aggregate_lead_times=[2, 2])
    assert inp.lead_time_days == 9


def test_build_inputs_splits_rows_by_variant():
    history = pd.concat([_history(1), _history(2).iloc[:2]], ignore_index=True)
    stocks = _stocks(1)
    variants = [
        {"variant_id": 1, "variant_sku": "SKU-1", "unit_price": 10.0},
        {"variant_id": 2, "variant_sku": "SKU-2", "unit_price": 10.0},
    ]
    inputs = build_optimization_inputs(variants, history, stocks)
    assert [i.variant_sku for i in inputs] == ["SKU-1", "SKU-2"]
    assert inputs[0].average_daily_demand == 10.0
    assert inputs[0].available == 80.0
    assert inputs[1].average_daily_demand == 10.0  # single month of 300
    assert inputs[1].on_hand == 0.0


def test_build_inputs_requires_variant_id_column():
    with pytest.raises(KeyError):
        build_optimization_inputs([{"variant_id": 1, "variant_sku": "X"}], _history())
