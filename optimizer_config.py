from __future__ import annotations
import copy
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from optimizer_core import (
    OptimizationInput,
    ScenarioAdjustment,
    SimulationOptions,
    apply_preset,
)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_CONFIG: Dict = {
    "Simulation": {
        "iterations": 500,
        "seed": 0,  # 0 = fresh seed per run
        "per_sku_seeds": False,
        "max_workers": 1,
    },
    "Defaults": {
        "service_level": 0.92,
        "holding_cost_rate": 0.2,
        "ordering_cost": 25.0,
        "review_period_days": 30,
        "lead_time_days": 14,
        "min_stockout_cost": 5.0,
        "stockout_price_multiplier": 1.5,
        "fallback_unit_price": 10.0,
        "currency": "EUR",
        "days_per_month": 30,
        "abc_service_levels": {"A": 0.98, "B": 0.95, "C": 0.90},
    },
    "Items": [],
    "Scenarios": [],
}

REQUIRED_KEYS: Dict[str, Iterable[str]] = {
    "Simulation": ("iterations", "seed"),
    "Defaults": ("service_level", "currency"),
}


def deep_merge(defaults: Dict, user_cfg: Optional[Dict]) -> Dict:
    """Overlay a user config onto ``defaults`` without touching either.

    Nested sections (``Simulation``, ``Defaults``, ``abc_service_levels``)
    merge key by key; lists such as ``Items`` and ``Scenarios`` are replaced
    wholesale.
    """
    merged = copy.deepcopy(defaults)
    for key, val in (user_cfg or {}).items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(val, dict):
            merged[key] = deep_merge(current, val)
        else:
            merged[key] = copy.deepcopy(val)
    return merged


def validate_config(cfg: Dict, required: Optional[Dict[str, Iterable[str]]] = None) -> None:
    """Check an optimizer config before it is converted into core types.

    ``required`` maps section names to the keys each must carry and defaults
    to ``REQUIRED_KEYS`` (``Simulation.iterations``/``seed`` and
    ``Defaults.service_level``/``currency``). Iteration counts are not
    range-checked here; the simulator floors them itself.
    """

    if not isinstance(cfg, dict):
        raise TypeError("Configuration must be a dictionary")
    required = REQUIRED_KEYS if required is None else required
    for section, keys in required.items():
        if section not in cfg:
            raise KeyError(f"Missing configuration section '{section}'")
        for key in keys:
            if key not in cfg[section]:
                raise KeyError(f"Missing key '{section}.{key}'")

    sim = cfg.get("Simulation", {})
    if "max_workers" in sim and int(sim["max_workers"]) < 1:
        raise ValueError("Simulation.max_workers must be >= 1")
    for section in ("Items", "Scenarios"):
        if section in cfg and not isinstance(cfg[section], list):
            raise TypeError(f"'{section}' must be a list")


def load_config(path: Path | str) -> Dict:
    text = Path(path).read_text()
    data = json.loads(text)
    cfg = deep_merge(DEFAULT_CONFIG, data)
    validate_config(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Section converters
# ---------------------------------------------------------------------------
def simulation_options(cfg: Dict) -> SimulationOptions:
    sim = cfg.get("Simulation", {})
    return SimulationOptions(
        iterations=int(sim.get("iterations", 500)),
        seed=int(sim.get("seed", 0)),
        per_sku_seeds=bool(sim.get("per_sku_seeds", False)),
    )


def optimization_inputs(cfg: Dict) -> List[OptimizationInput]:
    currency = cfg.get("Defaults", {}).get("currency", "EUR")
    return [OptimizationInput.from_mapping(item, currency=currency) for item in cfg.get("Items", [])]


def scenario_adjustments(cfg: Dict) -> List[ScenarioAdjustment]:
    """Scenario entries are either adjustment mappings or preset names."""
    out: List[ScenarioAdjustment] = []
    for entry in cfg.get("Scenarios", []):
        if isinstance(entry, str):
            out.append(apply_preset(entry))
        else:
            out.append(ScenarioAdjustment.from_mapping(entry))
    return out


__all__ = [
    "DEFAULT_CONFIG",
    "deep_merge",
    "load_config",
    "optimization_inputs",
    "scenario_adjustments",
    "simulation_options",
    "validate_config",
]
