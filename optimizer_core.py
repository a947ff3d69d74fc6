from __future__ import annotations
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class OptimizationError(Exception):
    """Base class for replenishment optimizer failures."""


class InvalidArgumentError(OptimizationError, TypeError):
    """Raised when a required argument (input, baseline, adjustments) is None."""


class InvalidInputError(OptimizationError, ValueError):
    """Raised when an input carries implausible (negative) cost parameters."""


class OptimizationCancelled(OptimizationError):
    """Raised when a batch or comparison is cancelled between pipeline runs."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
def _to_dict(obj) -> Dict:
    out = asdict(obj)
    for key, val in out.items():
        if isinstance(val, datetime):
            out[key] = val.isoformat()
    return out


@dataclass(frozen=True)
class OptimizationInput:
    variant_id: int
    variant_sku: str
    product_name: str
    on_hand: float
    reserved: float
    available: float
    average_daily_demand: float
    demand_std_dev: float
    lead_time_days: int
    review_period_days: int
    unit_price: float
    currency: str
    holding_cost_rate: float
    ordering_cost: float
    service_level: float
    stockout_cost: float
    min_stock_level: float = 0.0
    configured_reorder_point: Optional[float] = None
    configured_reorder_quantity: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping, currency: str = "EUR") -> "OptimizationInput":
        """Build an input from a snake_case mapping (JSON config item, API payload)."""
        on_hand = float(data.get("on_hand", 0.0))
        reserved = float(data.get("reserved", 0.0))
        available = data.get("available")
        reorder_point = data.get("configured_reorder_point")
        reorder_qty = data.get("configured_reorder_quantity")
        try:
            return cls(
                variant_id=int(data["variant_id"]),
                variant_sku=str(data["variant_sku"]),
                product_name=str(data.get("product_name", "")),
                on_hand=on_hand,
                reserved=reserved,
                available=on_hand - reserved if available is None else float(available),
                average_daily_demand=float(data["average_daily_demand"]),
                demand_std_dev=float(data.get("demand_std_dev", 0.0)),
                lead_time_days=int(data["lead_time_days"]),
                review_period_days=int(data["review_period_days"]),
                unit_price=float(data["unit_price"]),
                currency=str(data.get("currency") or currency),
                holding_cost_rate=float(data["holding_cost_rate"]),
                ordering_cost=float(data["ordering_cost"]),
                service_level=float(data["service_level"]),
                stockout_cost=float(data["stockout_cost"]),
                min_stock_level=float(data.get("min_stock_level", 0.0)),
                configured_reorder_point=None if reorder_point is None else float(reorder_point),
                configured_reorder_quantity=None if reorder_qty is None else float(reorder_qty),
            )
        except KeyError as exc:
            raise KeyError(f"Missing optimization input field {exc.args[0]!r}") from None

    def to_dict(self) -> Dict:
        return _to_dict(self)


@dataclass(frozen=True)
class Policy:
    variant_id: int
    variant_sku: str
    product_name: str
    on_hand: float
    reserved: float
    available: float
    min_stock: float
    max_stock: float
    safety_stock: float
    reorder_point: float
    economic_order_quantity: float
    service_level: float
    average_daily_demand: float
    review_period_days: int
    holding_cost_rate: float
    ordering_cost: float
    unit_price: float
    currency: str

    def to_dict(self) -> Dict:
        return _to_dict(self)


@dataclass(frozen=True)
class Kpi:
    fill_rate: float
    total_cost: float
    holding_cost: float
    ordering_cost: float
    stockout_risk: float
    average_inventory: float

    def to_dict(self) -> Dict:
        return _to_dict(self)


@dataclass(frozen=True)
class MonteCarloSummary:
    iterations: int
    average_fill_rate: float
    average_total_cost: float
    stockout_probability: float

    def to_dict(self) -> Dict:
        return _to_dict(self)


@dataclass(frozen=True)
class SimulationOptions:
    iterations: int = 500
    seed: int = 0
    per_sku_seeds: bool = False


@dataclass(frozen=True)
class ScenarioAdjustment:
    name: str
    service_level: Optional[float] = None
    lead_time_days: Optional[int] = None
    review_period_days: Optional[int] = None
    holding_cost_rate: Optional[float] = None
    ordering_cost: Optional[float] = None
    stockout_cost: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping) -> "ScenarioAdjustment":
        if "name" not in data:
            raise KeyError("Scenario adjustment requires 'name'")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise KeyError(f"Unknown scenario adjustment fields: {unknown}")
        return cls(**dict(data))

    def overrides(self) -> Dict[str, float]:
        """Only the fields this adjustment actually sets."""
        return {
            key: getattr(self, key)
            for key in ADJUSTABLE_FIELDS
            if getattr(self, key) is not None
        }


ADJUSTABLE_FIELDS: Tuple[str, ...] = (
    "service_level",
    "lead_time_days",
    "review_period_days",
    "holding_cost_rate",
    "ordering_cost",
    "stockout_cost",
)


@dataclass(frozen=True)
class VariantRef:
    variant_id: int
    variant_sku: str
    product_name: str


@dataclass(frozen=True)
class ScenarioOutcome:
    name: str
    policy: Policy
    kpi: Kpi
    monte_carlo: MonteCarloSummary

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "policy": self.policy.to_dict(),
            "kpi": self.kpi.to_dict(),
            "monte_carlo": self.monte_carlo.to_dict(),
        }


@dataclass(frozen=True)
class ScenarioComparisonResult:
    generated_at: datetime
    variant: VariantRef
    baseline: ScenarioOutcome
    alternatives: Tuple[ScenarioOutcome, ...]

    def outcomes(self) -> List[ScenarioOutcome]:
        return [self.baseline, *self.alternatives]

    def to_dict(self) -> Dict:
        return {
            "generated_at": self.generated_at.isoformat(),
            "variant": asdict(self.variant),
            "baseline": self.baseline.to_dict(),
            "alternatives": [alt.to_dict() for alt in self.alternatives],
        }


@dataclass(frozen=True)
class RecommendationResult:
    generated_at: datetime
    policies: List[Policy]
    kpis: Dict[int, Kpi]
    monte_carlo: Dict[int, MonteCarloSummary]

    def to_dict(self) -> Dict:
        return {
            "generated_at": self.generated_at.isoformat(),
            "policies": [p.to_dict() for p in self.policies],
            "kpis": {str(k): v.to_dict() for k, v in self.kpis.items()},
            "monte_carlo": {str(k): v.to_dict() for k, v in self.monte_carlo.items()},
        }


BASELINE_NAME = "Base"


# ---------------------------------------------------------------------------
# Rounding + seed helpers
# ---------------------------------------------------------------------------
def round_half_away(value: float, places: int) -> float:
    """Round half away from zero on the decimal representation of ``value``.

    Python's ``round`` is banker's rounding on binary floats; downstream
    consumers expect 2.675 -> 2.68 style rounding.
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def _money(value: float) -> float:
    return round_half_away(value, 2)


def _rate(value: float) -> float:
    return round_half_away(value, 4)


_MAX_SEED = 2**31 - 1


class SeedSource:
    """Thread-safe source of fresh seeds for runs configured with ``seed == 0``.

    Pass ``seed`` to make the sequence of drawn seeds reproducible.
    """

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = np.random.default_rng(None if seed is None else int(seed))
        self._lock = threading.Lock()

    def next_seed(self) -> int:
        with self._lock:
            return int(self._rng.integers(low=1, high=_MAX_SEED))


DEFAULT_SEED_SOURCE = SeedSource()


_SEED_MASK = 0xFFFFFFFF


def _seed_entropy(seed: int) -> int:
    # numpy rejects negative entropy; fold signed 32-bit seeds onto [0, 2**32)
    return int(seed) & _SEED_MASK


def _rng(seed: int) -> np.random.Generator:
    return np.random.default_rng(_seed_entropy(seed))


def _resolve_seed(seed: int, seed_source: Optional[SeedSource]) -> int:
    if seed != 0:
        return int(seed)
    return (seed_source or DEFAULT_SEED_SOURCE).next_seed()


def derive_sku_seed(base_seed: int, variant_id: int) -> int:
    """Independent, reproducible seed for one SKU of a fixed-seed batch."""
    entropy = [_seed_entropy(base_seed), _seed_entropy(variant_id)]
    state = np.random.SeedSequence(entropy).generate_state(1)[0]
    return int(state) % _MAX_SEED + 1


# ---------------------------------------------------------------------------
# Policy calculation
# ---------------------------------------------------------------------------
# (upper service-level bound, z) pairs; a coarse inverse-normal table.
Z_SCORE_TABLE: Tuple[Tuple[float, float], ...] = (
    (0.50, 0.00),
    (0.80, 0.84),
    (0.85, 1.04),
    (0.90, 1.28),
    (0.95, 1.64),
    (0.98, 2.05),
    (0.99, 2.33),
)
Z_SCORE_MAX = 2.60

MIN_SERVICE_LEVEL = 0.5
MAX_SERVICE_LEVEL = 0.999
DAYS_PER_YEAR = 365


def resolve_z_score(service_level: float) -> float:
    for upper, z in Z_SCORE_TABLE:
        if service_level <= upper:
            return z
    return Z_SCORE_MAX


def clamp_service_level(service_level: float) -> float:
    return min(max(float(service_level), MIN_SERVICE_LEVEL), MAX_SERVICE_LEVEL)


def validate_input(inp: OptimizationInput) -> None:
    if inp is None:
        raise InvalidArgumentError("Optimization input must not be None")
    checks = {
        "unit_price": inp.unit_price,
        "holding_cost_rate": inp.holding_cost_rate,
        "stockout_cost": inp.stockout_cost,
    }
    for name, val in checks.items():
        if val < 0:
            raise InvalidInputError(f"{inp.variant_sku}: {name} must be non-negative (got {val})")


def calculate_policy(inp: OptimizationInput) -> Policy:
    """Derive safety stock, reorder point, min/max stock and EOQ for one SKU."""
    daily_demand = max(0.0, float(inp.average_daily_demand))
    lead_time = max(1, int(inp.lead_time_days))
    review_period = max(1, int(inp.review_period_days))
    deviation = max(0.01, float(inp.demand_std_dev))
    service_level = clamp_service_level(inp.service_level)
    z = resolve_z_score(service_level)

    safety_stock = _money(z * deviation * math.sqrt(lead_time))

    if inp.configured_reorder_point is not None:
        reorder_point = float(inp.configured_reorder_point)
    else:
        reorder_point = _money(daily_demand * lead_time + safety_stock)

    cycle_stock = _money(daily_demand * review_period)
    if inp.min_stock_level > 0:
        min_stock = _money(inp.min_stock_level)
    else:
        min_stock = _money(max(0.0, reorder_point - cycle_stock / 2))
    max_stock = _money(reorder_point + cycle_stock)

    holding_rate = max(0.01, float(inp.holding_cost_rate))
    annual_demand = daily_demand * DAYS_PER_YEAR
    holding_per_unit = float(inp.unit_price) * holding_rate
    ordering_cost = max(0.0, float(inp.ordering_cost))

    if holding_per_unit > 0 and annual_demand > 0 and ordering_cost > 0:
        eoq = _money(math.sqrt(2 * annual_demand * ordering_cost / holding_per_unit))
    elif inp.configured_reorder_quantity is not None:
        eoq = float(inp.configured_reorder_quantity)
    else:
        eoq = 0.0

    return Policy(
        variant_id=inp.variant_id,
        variant_sku=inp.variant_sku,
        product_name=inp.product_name,
        on_hand=inp.on_hand,
        reserved=inp.reserved,
        available=inp.available,
        min_stock=min_stock,
        max_stock=max_stock,
        safety_stock=safety_stock,
        reorder_point=reorder_point,
        economic_order_quantity=eoq,
        service_level=service_level,
        average_daily_demand=daily_demand,
        review_period_days=review_period,
        holding_cost_rate=holding_rate,
        ordering_cost=ordering_cost,
        unit_price=inp.unit_price,
        currency=inp.currency,
    )


# ---------------------------------------------------------------------------
# Deterministic KPIs
# ---------------------------------------------------------------------------
def _holding_cost(inp: OptimizationInput, policy: Policy) -> float:
    average_inventory = (policy.min_stock + policy.max_stock) / 2
    return (
        average_inventory * inp.unit_price * policy.holding_cost_rate
        / DAYS_PER_YEAR * policy.review_period_days
    )


def evaluate_kpis(inp: OptimizationInput, policy: Policy) -> Kpi:
    review_demand = policy.average_daily_demand * policy.review_period_days
    available = inp.available + policy.economic_order_quantity
    shortage = max(0.0, review_demand - available)
    if review_demand <= 0:
        fill_rate = 1.0
        stockout_risk = 0.0
    else:
        fill_rate = _rate(max(0.0, 1 - shortage / review_demand))
        stockout_risk = _rate(min(1.0, shortage / (review_demand + policy.safety_stock)))

    holding_cost = _money(_holding_cost(inp, policy))
    ordering_cost = _money(policy.ordering_cost)
    stockout_cost = _money(shortage * inp.stockout_cost)

    return Kpi(
        fill_rate=fill_rate,
        total_cost=_money(holding_cost + ordering_cost + stockout_cost),
        holding_cost=holding_cost,
        ordering_cost=ordering_cost,
        stockout_risk=stockout_risk,
        average_inventory=_money((policy.min_stock + policy.max_stock) / 2),
    )


# ---------------------------------------------------------------------------
# Monte Carlo demand simulation
# ---------------------------------------------------------------------------
MIN_ITERATIONS = 10


def sample_normal(rng: np.random.Generator, mean: float, std: float, size: int) -> np.ndarray:
    """Box-Muller normal draws, clamped at zero.

    Each draw consumes two uniform(0, 1] values from ``rng``.
    """
    if std <= 0:
        return np.full(size, float(mean))
    u = 1.0 - rng.random((size, 2))
    z = np.sqrt(-2.0 * np.log(u[:, 0])) * np.sin(2.0 * np.pi * u[:, 1])
    return np.maximum(mean + std * z, 0.0)


def run_monte_carlo(
    inp: OptimizationInput,
    policy: Policy,
    options: SimulationOptions,
    seed_source: Optional[SeedSource] = None,
) -> MonteCarloSummary:
    """Stress-test ``policy`` against sampled review-period demand.

    Parameters
    ----------
    inp, policy : OptimizationInput, Policy
        The SKU input and the policy derived from it.
    options : SimulationOptions
        ``iterations`` is floored at 10. ``seed == 0`` draws a fresh seed
        from ``seed_source`` (or the module default), any other seed makes
        the run reproducible.
    seed_source : SeedSource, optional
        Injected seed capability used only for default-seeded runs.

    Returns
    -------
    MonteCarloSummary
        Average fill rate (4 dp), average total cost (2 dp) and stockout
        probability (4 dp) over all draws.
    """

    iterations = max(MIN_ITERATIONS, int(options.iterations))
    seed = _resolve_seed(int(options.seed), seed_source)
    rng = _rng(seed)
    logger.debug("Monte Carlo %s: %d iterations, seed=%d", inp.variant_sku, iterations, seed)

    review = policy.review_period_days
    demand = sample_normal(
        rng,
        policy.average_daily_demand * review,
        float(inp.demand_std_dev) * math.sqrt(review),
        iterations,
    )

    available = inp.available + policy.economic_order_quantity
    shortage = np.maximum(demand - available, 0.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        fill = np.where(demand <= 0, 1.0, np.maximum(1.0 - shortage / demand, 0.0))
    stockouts = int(np.count_nonzero(shortage > 0))

    fixed_cost = _holding_cost(inp, policy) + policy.ordering_cost
    total_cost = fixed_cost + shortage * inp.stockout_cost

    return MonteCarloSummary(
        iterations=iterations,
        average_fill_rate=_rate(float(fill.mean())),
        average_total_cost=_money(float(total_cost.mean())),
        stockout_probability=_rate(stockouts / iterations),
    )


# ---------------------------------------------------------------------------
# Pipeline, batch recommendations & scenario comparison
# ---------------------------------------------------------------------------
def run_pipeline(
    inp: OptimizationInput,
    options: SimulationOptions,
    seed_source: Optional[SeedSource] = None,
) -> Tuple[Policy, Kpi, MonteCarloSummary]:
    """PolicyCalculator -> KpiEvaluator -> MonteCarloSimulator for one input."""
    validate_input(inp)
    policy = calculate_policy(inp)
    kpi = evaluate_kpis(inp, policy)
    summary = run_monte_carlo(inp, policy, options, seed_source)
    logger.debug(
        "Pipeline %s: rop=%.2f eoq=%.2f fill=%.4f mc_fill=%.4f",
        inp.variant_sku,
        policy.reorder_point,
        policy.economic_order_quantity,
        kpi.fill_rate,
        summary.average_fill_rate,
    )
    return policy, kpi, summary


def _run_all(
    tasks: Sequence[Callable[[], object]],
    *,
    max_workers: Optional[int],
    cancel_event: Optional[threading.Event],
    progress_cb: Optional[Callable[[int, int], None]],
) -> List:
    """Run independent pipeline tasks, returning results in submission order."""

    total = len(tasks)
    done = 0
    lock = threading.Lock()

    def _guarded(task: Callable[[], object]):
        nonlocal done
        if cancel_event is not None and cancel_event.is_set():
            raise OptimizationCancelled("Optimization cancelled before completion")
        result = task()
        if progress_cb:
            with lock:
                done += 1
                progress_cb(done, total)
        return result

    if progress_cb:
        progress_cb(0, total)

    workers = 1 if max_workers is None else max(1, int(max_workers))
    if workers == 1 or total <= 1:
        return [_guarded(task) for task in tasks]

    logger.debug("Running %d pipelines on %d workers", total, workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_guarded, task) for task in tasks]
        try:
            return [f.result() for f in futures]
        except BaseException:
            for f in futures:
                f.cancel()
            raise


def generate_recommendations(
    inputs: Optional[Iterable[OptimizationInput]],
    options: SimulationOptions,
    *,
    seed_source: Optional[SeedSource] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> RecommendationResult:
    """Run the optimization pipeline once per SKU.

    With a fixed non-zero seed every SKU reuses that seed unless
    ``options.per_sku_seeds`` is set, in which case each SKU gets a seed
    derived from ``(seed, variant_id)``.
    """

    if inputs is None:
        raise InvalidArgumentError("inputs must not be None")
    items = list(inputs)

    def _task(inp: OptimizationInput):
        validate_input(inp)
        sku_options = options
        if options.per_sku_seeds and options.seed != 0:
            sku_options = replace(options, seed=derive_sku_seed(options.seed, inp.variant_id))
        return run_pipeline(inp, sku_options, seed_source)

    results = _run_all(
        [lambda inp=inp: _task(inp) for inp in items],
        max_workers=max_workers,
        cancel_event=cancel_event,
        progress_cb=progress_cb,
    )

    policies: List[Policy] = []
    kpis: Dict[int, Kpi] = {}
    summaries: Dict[int, MonteCarloSummary] = {}
    for inp, (policy, kpi, summary) in zip(items, results):
        policies.append(policy)
        kpis[inp.variant_id] = kpi
        summaries[inp.variant_id] = summary

    return RecommendationResult(
        generated_at=datetime.now(timezone.utc),
        policies=policies,
        kpis=kpis,
        monte_carlo=summaries,
    )


def apply_adjustment(baseline: OptimizationInput, adjustment: ScenarioAdjustment) -> OptimizationInput:
    """Copy of ``baseline`` with only the adjustment's non-None fields overridden."""
    return replace(baseline, **adjustment.overrides())


def compare_scenarios(
    baseline: Optional[OptimizationInput],
    adjustments: Optional[Iterable[ScenarioAdjustment]],
    options: SimulationOptions,
    *,
    seed_source: Optional[SeedSource] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> ScenarioComparisonResult:
    """Evaluate the baseline and each what-if adjustment independently.

    The baseline outcome is always named ``"Base"``; alternatives keep the
    order in which adjustments were supplied, even when run in parallel.
    """

    if baseline is None:
        raise InvalidArgumentError("baseline must not be None")
    if adjustments is None:
        raise InvalidArgumentError("adjustments must not be None")
    adjustment_list = list(adjustments)

    named_inputs: List[Tuple[str, OptimizationInput]] = [(BASELINE_NAME, baseline)]
    named_inputs.extend((adj.name, apply_adjustment(baseline, adj)) for adj in adjustment_list)

    results = _run_all(
        [lambda inp=inp: run_pipeline(inp, options, seed_source) for _, inp in named_inputs],
        max_workers=max_workers,
        cancel_event=cancel_event,
        progress_cb=progress_cb,
    )
    outcomes = [
        ScenarioOutcome(name=name, policy=policy, kpi=kpi, monte_carlo=summary)
        for (name, _), (policy, kpi, summary) in zip(named_inputs, results)
    ]

    return ScenarioComparisonResult(
        generated_at=datetime.now(timezone.utc),
        variant=VariantRef(baseline.variant_id, baseline.variant_sku, baseline.product_name),
        baseline=outcomes[0],
        alternatives=tuple(outcomes[1:]),
    )


# ---------------------------------------------------------------------------
# Scenario presets
# ---------------------------------------------------------------------------
SCENARIO_PRESETS: Dict[str, ScenarioAdjustment] = {
    "service_level_99": ScenarioAdjustment("service_level_99", service_level=0.99),
    "service_level_90": ScenarioAdjustment("service_level_90", service_level=0.90),
    "supplier_delay_14d": ScenarioAdjustment("supplier_delay_14d", lead_time_days=14),
    "weekly_review": ScenarioAdjustment("weekly_review", review_period_days=7),
    "expensive_capital": ScenarioAdjustment("expensive_capital", holding_cost_rate=0.35),
    "cheap_ordering": ScenarioAdjustment("cheap_ordering", ordering_cost=5.0),
}


def apply_preset(preset_name: str) -> ScenarioAdjustment:
    adjustment = SCENARIO_PRESETS.get(preset_name)
    if adjustment is None:
        raise KeyError(f"Scenario preset '{preset_name}' not found")
    return adjustment


__all__ = [
    "ADJUSTABLE_FIELDS",
    "BASELINE_NAME",
    "DEFAULT_SEED_SOURCE",
    "InvalidArgumentError",
    "InvalidInputError",
    "Kpi",
    "MonteCarloSummary",
    "OptimizationCancelled",
    "OptimizationError",
    "OptimizationInput",
    "Policy",
    "RecommendationResult",
    "SCENARIO_PRESETS",
    "ScenarioAdjustment",
    "ScenarioComparisonResult",
    "ScenarioOutcome",
    "SeedSource",
    "SimulationOptions",
    "VariantRef",
    "Z_SCORE_TABLE",
    "apply_adjustment",
    "apply_preset",
    "calculate_policy",
    "clamp_service_level",
    "compare_scenarios",
    "derive_sku_seed",
    "evaluate_kpis",
    "generate_recommendations",
    "resolve_z_score",
    "round_half_away",
    "run_monte_carlo",
    "run_pipeline",
    "sample_normal",
    "validate_input",
]
