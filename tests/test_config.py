import json

import pytest

from optimizer_config import (
    DEFAULT_CONFIG,
    deep_merge,
    load_config,
    optimization_inputs,
    scenario_adjustments,
    simulation_options,
    validate_config,
)
from optimizer_core import OptimizationInput, ScenarioAdjustment, calculate_policy, run_monte_carlo


ITEM = {
    "variant_id": 1,
    "variant_sku": "SKU-1",
    "product_name": "Widget",
    "on_hand": 100,
    "reserved": 20,
    "average_daily_demand": 10,
    "demand_std_dev": 2,
    "lead_time_days": 5,
    "review_period_days": 7,
    "unit_price": 10,
    "holding_cost_rate": 0.2,
    "ordering_cost": 50,
    "service_level": 0.95,
    "stockout_cost": 5,
}


def test_validate_config_missing_section():
    with pytest.raises(KeyError):
        validate_config({})


def test_validate_config_missing_key():
    cfg = deep_merge(DEFAULT_CONFIG, {})
    del cfg["Simulation"]["seed"]
    with pytest.raises(KeyError):
        validate_config(cfg)


def test_negative_iterations_fall_through_to_simulation_floor(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"Simulation": {"iterations": -5, "seed": 3}, "Items": [ITEM]}))
    cfg = load_config(path)
    opts = simulation_options(cfg)
    assert opts.iterations == -5

    (inp,) = optimization_inputs(cfg)
    summary = run_monte_carlo(inp, calculate_policy(inp), opts)
    assert summary.iterations == 10


def test_validate_config_rejects_bad_values():
    with pytest.raises(ValueError):
        validate_config(deep_merge(DEFAULT_CONFIG, {"Simulation": {"max_workers": 0}}))
    with pytest.raises(TypeError):
        validate_config(deep_merge(DEFAULT_CONFIG, {"Items": {"not": "a list"}}))
    with pytest.raises(TypeError):
        validate_config(["not", "a", "dict"])


def test_deep_merge_does_not_mutate_defaults():
    merged = deep_merge(DEFAULT_CONFIG, {"Defaults": {"abc_service_levels": {"A": 0.99}}})
    assert merged["Defaults"]["abc_service_levels"] == {"A": 0.99, "B": 0.95, "C": 0.90}
    assert DEFAULT_CONFIG["Defaults"]["abc_service_levels"]["A"] == 0.98


def test_deep_merge_replaces_lists():
    merged = deep_merge(DEFAULT_CONFIG, {"Scenarios": ["weekly_review"]})
    assert merged["Scenarios"] == ["weekly_review"]
    assert DEFAULT_CONFIG["Scenarios"] == []
    assert deep_merge(DEFAULT_CONFIG, None) == DEFAULT_CONFIG


def test_load_config_merges_defaults(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"Simulation": {"iterations": 200}, "Items": [ITEM]}))
    cfg = load_config(path)
    assert cfg["Simulation"]["iterations"] == 200
    assert cfg["Simulation"]["seed"] == 0
    assert cfg["Defaults"]["currency"] == "EUR"

    opts = simulation_options(cfg)
    assert opts.iterations == 200
    assert opts.seed == 0
    assert opts.per_sku_seeds is False


def test_optimization_inputs_derive_available_and_currency():
    cfg = deep_merge(DEFAULT_CONFIG, {"Defaults": {"currency": "USD"}, "Items": [ITEM]})
    (inp,) = optimization_inputs(cfg)
    assert isinstance(inp, OptimizationInput)
    assert inp.available == 80.0
    assert inp.currency == "USD"
    assert inp.min_stock_level == 0.0
    assert inp.configured_reorder_point is None


def test_optimization_input_missing_field():
    broken = dict(ITEM)
    del broken["unit_price"]
    with pytest.raises(KeyError):
        OptimizationInput.from_mapping(broken)


def test_scenario_adjustments_accept_presets_and_mappings():
    cfg = deep_merge(
        DEFAULT_CONFIG,
        {"Scenarios": ["weekly_review", {"name": "slow", "lead_time_days": 21}]},
    )
    adjustments = scenario_adjustments(cfg)
    assert [a.name for a in adjustments] == ["weekly_review", "slow"]
    assert adjustments[0].review_period_days == 7
    assert adjustments[1].overrides() == {"lead_time_days": 21}


def test_scenario_adjustment_rejects_unknown_fields():
    with pytest.raises(KeyError):
        ScenarioAdjustment.from_mapping({"name": "x", "lead_time": 3})
    with pytest.raises(KeyError):
        ScenarioAdjustment.from_mapping({"service_level": 0.9})


def test_unknown_preset_in_config():
    cfg = deep_merge(DEFAULT_CONFIG, {"Scenarios": ["nope"]})
    with pytest.raises(KeyError):
        scenario_adjustments(cfg)
