"""
Monte Carlo Risk Simulator

Quantifies outcome risk for a promotion decision by sampling its uncertain
drivers many times.

Per iteration:
1. Draw one sample per declared variable from its distribution
2. Compose the outcome: outcome *= 1 + sample * impact
3. Apply the scenario's secondary effects (cannibalization, elasticity,
   budget split, market drift, competitor reaction)
4. Clamp to the declared min/max constraints

Iterations are independent, so the run is map-reduce: iterations are split into
fixed-size chunks, each chunk gets its own child seed spawned from the run seed,
chunks may execute on a thread pool, and the outcome arrays are concatenated in
chunk order. A fixed seed therefore produces identical output for any worker
count.

Aggregation is single pass over the concatenated arrays: distribution summary,
scenario extraction (actual draws of the iteration at the 95th/5th/50th
position), sensitivity ranking, and rule-based recommendations.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import ComputeLimits, SimulationConfig
from .errors import InvalidInputError, NumericDegeneracyError
from .signals import EPSILON
from .trend import detect_seasonality, fit_trend

logger = logging.getLogger(__name__)


class SimulationType(str, Enum):
    PROMOTION_IMPACT = "PROMOTION_IMPACT"
    PRICE_OPTIMIZATION = "PRICE_OPTIMIZATION"
    BUDGET_ALLOCATION = "BUDGET_ALLOCATION"
    MARKET_SCENARIO = "MARKET_SCENARIO"
    COMPETITIVE_RESPONSE = "COMPETITIVE_RESPONSE"


class Distribution(str, Enum):
    NORMAL = "normal"
    UNIFORM = "uniform"
    EXPONENTIAL = "exponential"
    LOGNORMAL = "lognormal"


class ConstraintType(str, Enum):
    MIN = "min"
    MAX = "max"


def _parse_enum(enum_cls, raw: Any, label: str):
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = [m.value for m in enum_cls]
        raise InvalidInputError(
            f"Unknown {label}: {raw!r}",
            details={label.replace(" ", "_"): raw, "allowed": allowed},
        ) from None


# =============================================================================
# DISTRIBUTIONS
# =============================================================================

# Parameter defaults per distribution
DISTRIBUTION_DEFAULTS: Dict[Distribution, Dict[str, float]] = {
    Distribution.NORMAL: {"mean": 0.0, "std": 1.0},
    Distribution.UNIFORM: {"min": 0.0, "max": 1.0},
    Distribution.EXPONENTIAL: {"lambda": 1.0},
    Distribution.LOGNORMAL: {"mean": 0.0, "std": 1.0},
}

Sampler = Callable[[np.random.Generator, Mapping[str, float], int], np.ndarray]

DISTRIBUTION_SAMPLERS: Dict[Distribution, Sampler] = {
    Distribution.NORMAL: lambda rng, p, n: rng.normal(p["mean"], p["std"], n),
    Distribution.UNIFORM: lambda rng, p, n: rng.uniform(p["min"], p["max"], n),
    Distribution.EXPONENTIAL: lambda rng, p, n: rng.exponential(1.0 / p["lambda"], n),
    # Parameters describe the underlying normal
    Distribution.LOGNORMAL: lambda rng, p, n: rng.lognormal(p["mean"], p["std"], n),
}


def _validate_params(distribution: Distribution, raw: Mapping[str, Any], name: str) -> Dict[str, float]:
    params = dict(DISTRIBUTION_DEFAULTS[distribution])
    for key, value in dict(raw or {}).items():
        if key not in params:
            raise InvalidInputError(
                f"Variable '{name}': unknown parameter '{key}' for {distribution.value}",
                details={"variable": name, "allowed": sorted(params)},
            )
        try:
            params[key] = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Variable '{name}': parameter '{key}' is not numeric") from e
        if not math.isfinite(params[key]):
            raise InvalidInputError(f"Variable '{name}': parameter '{key}' must be finite")

    if distribution in (Distribution.NORMAL, Distribution.LOGNORMAL) and params["std"] < 0:
        raise InvalidInputError(f"Variable '{name}': std must be non-negative")
    if distribution is Distribution.UNIFORM and params["max"] < params["min"]:
        raise InvalidInputError(f"Variable '{name}': uniform max must be >= min")
    if distribution is Distribution.EXPONENTIAL and params["lambda"] <= 0:
        raise InvalidInputError(f"Variable '{name}': exponential lambda must be positive")
    return params


# =============================================================================
# SPEC
# =============================================================================

@dataclass(frozen=True)
class VariableSpec:
    name: str
    distribution: Distribution
    params: Mapping[str, float] = field(default_factory=dict)
    impact: float = 1.0

    def sample(self, rng: np.random.Generator, size: int) -> np.ndarray:
        return DISTRIBUTION_SAMPLERS[self.distribution](rng, self.params, size)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VariableSpec":
        if "name" not in data:
            raise InvalidInputError("Variable is missing 'name'")
        name = str(data["name"])
        distribution = _parse_enum(Distribution, data.get("distribution", "normal"), "distribution")
        try:
            impact = float(data.get("impact", 1.0))
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Variable '{name}': impact is not numeric") from e
        if not math.isfinite(impact):
            raise InvalidInputError(f"Variable '{name}': impact must be finite")
        return cls(
            name=name,
            distribution=distribution,
            params=_validate_params(distribution, data.get("params", {}), name),
            impact=impact,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "distribution": self.distribution.value,
            "params": dict(self.params),
            "impact": self.impact,
        }


@dataclass(frozen=True)
class Constraint:
    type: ConstraintType
    value: float

    def apply(self, outcomes: np.ndarray) -> np.ndarray:
        if self.type is ConstraintType.MIN:
            return np.maximum(outcomes, self.value)
        return np.minimum(outcomes, self.value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Constraint":
        ctype = _parse_enum(ConstraintType, data.get("type"), "constraint type")
        try:
            value = float(data["value"])
        except KeyError:
            raise InvalidInputError("Constraint is missing 'value'") from None
        except (TypeError, ValueError) as e:
            raise InvalidInputError("Constraint value is not numeric") from e
        return cls(type=ctype, value=value)


@dataclass(frozen=True)
class SimulationSpec:
    type: SimulationType
    base_value: float
    variables: Tuple[VariableSpec, ...] = ()
    constraints: Tuple[Constraint, ...] = ()
    iterations: int = 10_000
    confidence_level: float = 95.0
    seed: Optional[int] = None
    market_context: Mapping[str, float] = field(default_factory=dict)
    history: Tuple[float, ...] = ()

    def __post_init__(self):
        if not isinstance(self.type, SimulationType):
            object.__setattr__(self, "type", _parse_enum(SimulationType, self.type, "simulation type"))
        if isinstance(self.iterations, bool) or not isinstance(self.iterations, int) or self.iterations <= 0:
            raise InvalidInputError(
                f"Iterations must be a positive integer, got {self.iterations!r}",
                details={"iterations": self.iterations},
            )
        if not math.isfinite(self.base_value):
            raise InvalidInputError("base_value must be finite")
        if not 0 < self.confidence_level < 100:
            raise InvalidInputError(f"Confidence level must be in (0, 100), got {self.confidence_level}")
        names = [v.name for v in self.variables]
        if len(set(names)) != len(names):
            raise InvalidInputError("Variable names must be unique")
        if self.type is SimulationType.BUDGET_ALLOCATION and not self.variables:
            raise InvalidInputError("Budget allocation needs at least one channel variable")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SimulationSpec":
        """Build and validate a spec from a JSON-shaped mapping."""
        sim_type = _parse_enum(SimulationType, data.get("type"), "simulation type")
        if "base_value" not in data:
            raise InvalidInputError("Simulation spec is missing 'base_value'")
        iterations = data.get("iterations", SimulationConfig.default_iterations)
        if isinstance(iterations, float) and iterations.is_integer():
            iterations = int(iterations)
        try:
            base_value = float(data["base_value"])
            confidence_level = float(data.get("confidence_level", SimulationConfig.default_confidence_level))
            market_context = {k: float(v) for k, v in dict(data.get("market_context") or {}).items()}
            history = tuple(float(v) for v in data.get("history") or ())
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed simulation spec: {e}") from e
        seed = data.get("seed")
        return cls(
            type=sim_type,
            base_value=base_value,
            variables=tuple(VariableSpec.from_dict(v) for v in data.get("variables") or ()),
            constraints=tuple(Constraint.from_dict(c) for c in data.get("constraints") or ()),
            iterations=iterations,
            confidence_level=confidence_level,
            seed=int(seed) if seed is not None else None,
            market_context=market_context,
            history=history,
        )

    def variable(self, name: str) -> Optional[VariableSpec]:
        return next((v for v in self.variables if v.name == name), None)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class SummaryStatistics:
    mean: float
    median: float
    std: float
    min: float
    max: float
    percentiles: Mapping[str, float]
    confidence_interval: Tuple[float, float]
    probability_distribution: Tuple[Tuple[float, float], ...]  # (bin midpoint, frequency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mean": self.mean,
            "median": self.median,
            "std": self.std,
            "min": self.min,
            "max": self.max,
            "percentiles": dict(self.percentiles),
            "confidence_interval": {
                "lower": self.confidence_interval[0],
                "upper": self.confidence_interval[1],
            },
            "probability_distribution": [
                {"value": value, "probability": prob} for value, prob in self.probability_distribution
            ],
        }


@dataclass(frozen=True)
class Scenario:
    value: float
    conditions: Mapping[str, float]
    probability: float

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "conditions": dict(self.conditions), "probability": self.probability}


@dataclass(frozen=True)
class Sensitivity:
    variable: str
    sensitivity: float
    correlation: float

    def to_dict(self) -> Dict[str, Any]:
        return {"variable": self.variable, "sensitivity": self.sensitivity, "correlation": self.correlation}


@dataclass(frozen=True)
class SimulationResult:
    type: SimulationType
    iterations: int
    summary: SummaryStatistics
    scenarios: Mapping[str, Scenario]
    sensitivities: Tuple[Sensitivity, ...]
    recommendations: Tuple[str, ...]
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "iterations": self.iterations,
            "seed": self.seed,
            "summary": self.summary.to_dict(),
            "scenarios": {name: s.to_dict() for name, s in self.scenarios.items()},
            "sensitivities": [s.to_dict() for s in self.sensitivities],
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# SCENARIO HANDLERS
# =============================================================================

Draws = Dict[str, np.ndarray]
ScenarioHandler = Callable[[SimulationSpec, np.random.Generator, int], Tuple[np.ndarray, Draws]]


def _apply_variables(
    spec: SimulationSpec,
    rng: np.random.Generator,
    n: int,
    outcomes: np.ndarray,
    draws: Draws,
    skip: Sequence[str] = (),
) -> np.ndarray:
    for variable in spec.variables:
        if variable.name in skip:
            continue
        sample = variable.sample(rng, n)
        draws[variable.name] = sample
        outcomes = outcomes * (1 + sample * variable.impact)
    return outcomes


def _simulate_promotion(spec: SimulationSpec, rng: np.random.Generator, n: int) -> Tuple[np.ndarray, Draws]:
    draws: Draws = {}
    outcomes = _apply_variables(spec, rng, n, np.full(n, spec.base_value), draws)
    cannibalization = rng.uniform(0.1, 0.3, n)
    competitive_response = rng.uniform(0.0, 0.15, n)
    outcomes = outcomes * (1 - cannibalization) * (1 - competitive_response)
    return outcomes, draws


PRICE_CHANGE = "priceChange"
BASE_ELASTICITY = -1.5


def _simulate_price(spec: SimulationSpec, rng: np.random.Generator, n: int) -> Tuple[np.ndarray, Draws]:
    draws: Draws = {}
    declared = spec.variable(PRICE_CHANGE)
    if declared is not None:
        price_change = declared.sample(rng, n)
    else:
        price_change = rng.normal(0.0, 0.1, n)
    draws[PRICE_CHANGE] = price_change

    elasticity = BASE_ELASTICITY + rng.normal(0.0, 0.2, n)
    volume = 1 + price_change * elasticity
    outcomes = spec.base_value * (1 + price_change) * volume
    outcomes = _apply_variables(spec, rng, n, outcomes, draws, skip=(PRICE_CHANGE,))
    return outcomes, draws


def _simulate_budget(spec: SimulationSpec, rng: np.random.Generator, n: int) -> Tuple[np.ndarray, Draws]:
    draws: Draws = {}
    remaining = np.full(n, spec.base_value)
    allocations = []
    for _ in spec.variables[:-1]:
        allocation = rng.uniform(0.0, 1.0, n) * remaining * 0.5
        allocations.append(allocation)
        remaining = remaining - allocation
    allocations.append(remaining)

    outcomes = np.zeros(n)
    for variable, allocation in zip(spec.variables, allocations):
        efficiency = variable.sample(rng, n)
        draws[variable.name] = efficiency
        outcomes = outcomes + allocation * efficiency * variable.impact
    return outcomes, draws


# Fixed coefficients for the named macro drivers
MARKET_DRIVERS = {
    "economicGrowth": 0.3,
    "competitorActivity": -0.2,
    "consumerSentiment": 0.15,
}


def market_drift(spec: SimulationSpec) -> Tuple[float, float]:
    """(seasonality factor, trend) for a market scenario.

    Explicit `market_context` values win; otherwise they are read off the
    supplied history (recent seasonal level vs overall mean, and the fitted
    slope relative to the mean). Neither source -> (1.0, 0.0).
    """
    seasonality = spec.market_context.get("seasonality")
    trend = spec.market_context.get("trend")
    history = np.asarray(spec.history, dtype=float)
    if history.size >= 2:
        level = float(history.mean())
        if trend is None and abs(level) > EPSILON:
            trend = fit_trend(history).slope / abs(level)
        if seasonality is None and abs(level) > EPSILON:
            detected = detect_seasonality(history)
            if detected.detected:
                seasonality = float(history[-detected.period:].mean()) / level
    return (1.0 if seasonality is None else seasonality, 0.0 if trend is None else trend)


def _simulate_market(spec: SimulationSpec, rng: np.random.Generator, n: int) -> Tuple[np.ndarray, Draws]:
    draws: Draws = {}
    seasonality, trend = market_drift(spec)
    outcomes = np.full(n, spec.base_value * seasonality * (1 + trend))
    for variable in spec.variables:
        sample = variable.sample(rng, n)
        draws[variable.name] = sample
        coefficient = MARKET_DRIVERS.get(variable.name, variable.impact)
        outcomes = outcomes * (1 + sample * coefficient)
    volatility = rng.normal(0.0, 0.05, n)
    return outcomes * (1 + volatility), draws


OUR_ACTION = "ourAction"
COMPETITOR_RESPONSE = "competitorResponse"
REACTION_PROBABILITY = 0.7
DEFAULT_REACTION_STRENGTH = 0.5


def _simulate_competitive(spec: SimulationSpec, rng: np.random.Generator, n: int) -> Tuple[np.ndarray, Draws]:
    draws: Draws = {}
    declared = spec.variable(OUR_ACTION)
    our_action = declared.sample(rng, n) if declared is not None else rng.uniform(0.0, 1.0, n)
    strength = spec.market_context.get("reaction_strength", DEFAULT_REACTION_STRENGTH)

    reacts = rng.uniform(0.0, 1.0, n) < REACTION_PROBABILITY
    response = np.where(reacts, our_action * strength * rng.normal(1.0, 0.2, n), 0.0)
    draws[OUR_ACTION] = our_action
    draws[COMPETITOR_RESPONSE] = response

    outcomes = spec.base_value * (1 + (our_action - response) * 0.1)
    outcomes = _apply_variables(spec, rng, n, outcomes, draws, skip=(OUR_ACTION, COMPETITOR_RESPONSE))
    return outcomes, draws


SCENARIO_HANDLERS: Dict[SimulationType, ScenarioHandler] = {
    SimulationType.PROMOTION_IMPACT: _simulate_promotion,
    SimulationType.PRICE_OPTIMIZATION: _simulate_price,
    SimulationType.BUDGET_ALLOCATION: _simulate_budget,
    SimulationType.MARKET_SCENARIO: _simulate_market,
    SimulationType.COMPETITIVE_RESPONSE: _simulate_competitive,
}


# =============================================================================
# AGGREGATION
# =============================================================================

def summarize(outcomes: np.ndarray, confidence_level: float, bins: int = 50) -> SummaryStatistics:
    """Distribution summary with an empirical (percentile) confidence interval."""
    p5, p25, p50, p75, p95 = (float(v) for v in np.percentile(outcomes, [5, 25, 50, 75, 95]))
    alpha = 1 - confidence_level / 100
    lower, upper = (float(v) for v in np.percentile(outcomes, [alpha / 2 * 100, (1 - alpha / 2) * 100]))

    lo, hi = float(outcomes.min()), float(outcomes.max())
    # numpy widens a zero-width range by +/-0.5, so constant outcomes still bin
    counts, edges = np.histogram(outcomes, bins=bins, range=(lo, hi))
    midpoints = (edges[:-1] + edges[1:]) / 2
    frequencies = counts / outcomes.size

    return SummaryStatistics(
        mean=float(outcomes.mean()),
        median=float(np.median(outcomes)),
        std=float(outcomes.std()),
        min=lo,
        max=hi,
        percentiles={"p5": p5, "p25": p25, "p50": p50, "p75": p75, "p95": p95},
        confidence_interval=(lower, upper),
        probability_distribution=tuple(
            (float(m), float(f)) for m, f in zip(midpoints, frequencies)
        ),
    )


def extract_scenarios(outcomes: np.ndarray, draws: Draws) -> Dict[str, Scenario]:
    n = outcomes.size
    order = np.argsort(outcomes, kind="stable")

    def at(fraction: float, probability: float) -> Scenario:
        index = int(order[min(int(n * fraction), n - 1)])
        return Scenario(
            value=float(outcomes[index]),
            conditions={name: float(values[index]) for name, values in draws.items()},
            probability=probability,
        )

    return {
        "best": at(0.95, 0.05),
        "worst": at(0.05, 0.05),
        "most_likely": at(0.5, 0.5),
    }


def pearson(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation; 0.0 when either side has no variance."""
    if x.std() < EPSILON or y.std() < EPSILON:
        return 0.0
    return float(np.corrcoef(x, y)[0, 1])


def elasticity(outcomes: np.ndarray, values: np.ndarray) -> float:
    """Mean of relative outcome change over relative variable change.

    Iterations where the variable sits exactly on its mean are skipped, and the
    mean is taken over the remaining iterations only.
    """
    mean_outcome = float(outcomes.mean())
    mean_value = float(values.mean())
    if abs(mean_outcome) < EPSILON or abs(mean_value) < EPSILON:
        return 0.0
    outcome_change = (outcomes - mean_outcome) / mean_outcome
    value_change = (values - mean_value) / mean_value
    mask = value_change != 0
    if not mask.any():
        return 0.0
    ratios = outcome_change[mask] / value_change[mask]
    ratios = ratios[np.isfinite(ratios)]
    if ratios.size == 0:
        return 0.0
    return float(ratios.mean())


def rank_sensitivities(outcomes: np.ndarray, draws: Draws) -> List[Sensitivity]:
    sensitivities = [
        Sensitivity(variable=name, sensitivity=elasticity(outcomes, values), correlation=pearson(values, outcomes))
        for name, values in draws.items()
    ]
    return sorted(sensitivities, key=lambda s: abs(s.sensitivity), reverse=True)


def recommend(
    spec: SimulationSpec,
    summary: SummaryStatistics,
    scenarios: Mapping[str, Scenario],
    sensitivities: Sequence[Sensitivity],
) -> List[str]:
    recommendations = []

    if abs(summary.mean) > EPSILON and summary.std / abs(summary.mean) > 0.3:
        recommendations.append("High variability detected. Consider risk mitigation strategies.")

    best, worst = scenarios["best"].value, scenarios["worst"].value
    if worst > 0 and best / worst > 3:
        recommendations.append("Wide range of potential outcomes. Focus on factors that drive best-case scenarios.")

    if spec.type is SimulationType.PROMOTION_IMPACT:
        if abs(spec.base_value) > EPSILON and summary.mean / spec.base_value < 1.2:
            recommendations.append(
                "Expected return is below 20% over the base value. Review promotion mechanics."
            )
        if sensitivities and sensitivities[0].variable == "discount" and sensitivities[0].sensitivity < -2:
            recommendations.append("High price sensitivity detected. Smaller discounts may be more profitable.")

    elif spec.type is SimulationType.PRICE_OPTIMIZATION:
        price_change = scenarios["most_likely"].conditions.get(PRICE_CHANGE, 0.0)
        if abs(price_change) > 0.05:
            direction = "increasing" if price_change > 0 else "decreasing"
            recommendations.append(f"Consider {direction} price by {abs(price_change) * 100:.1f}%")

    elif spec.type is SimulationType.BUDGET_ALLOCATION:
        if sensitivities:
            recommendations.append(
                f"Prioritize budget allocation to {sensitivities[0].variable} for maximum ROI."
            )

    elif spec.type is SimulationType.MARKET_SCENARIO:
        if worst < 0.8 * summary.mean:
            recommendations.append("Prepare contingency plans for adverse market conditions.")

    elif spec.type is SimulationType.COMPETITIVE_RESPONSE:
        response = next((s for s in sensitivities if s.variable == COMPETITOR_RESPONSE), None)
        if response is not None and response.correlation < -0.5:
            recommendations.append(
                "Strong negative correlation with competitor actions. Consider differentiation strategies."
            )

    if sensitivities:
        top = ", ".join(s.variable for s in sensitivities[:3])
        recommendations.append(f"Focus on optimizing: {top} for maximum impact.")
        recommendations.append(f"Priority lever: {sensitivities[0].variable}")
    return recommendations


# =============================================================================
# SIMULATOR
# =============================================================================

class MonteCarloSimulator:
    """
    Chunked, seedable Monte Carlo runner.

    Usage:
        simulator = MonteCarloSimulator(SimulationConfig(workers=4))
        result = simulator.simulate(SimulationSpec.from_dict(payload))
    """

    def __init__(self, config: Optional[SimulationConfig] = None, limits: Optional[ComputeLimits] = None):
        self.config = config or SimulationConfig()
        self.limits = limits or ComputeLimits()

    def simulate(self, spec: Union[SimulationSpec, Mapping[str, Any]]) -> SimulationResult:
        if not isinstance(spec, SimulationSpec):
            spec = SimulationSpec.from_dict(spec)
        self.limits.check_iterations(spec.iterations)

        seed = spec.seed if spec.seed is not None else self.config.seed
        outcomes, draws = self._sample(spec, seed)
        non_finite = int(np.count_nonzero(~np.isfinite(outcomes)))
        if non_finite:
            raise NumericDegeneracyError(
                f"Simulation produced {non_finite} non-finite outcomes; check variable parameters",
                details={"non_finite": non_finite, "iterations": spec.iterations},
            )

        summary = summarize(outcomes, spec.confidence_level, self.config.histogram_bins)
        scenarios = extract_scenarios(outcomes, draws)
        sensitivities = rank_sensitivities(outcomes, draws)
        recommendations = recommend(spec, summary, scenarios, sensitivities)

        logger.info(
            f"Simulation {spec.type.value}: {spec.iterations} iterations, "
            f"mean={summary.mean:.2f}, p5={summary.percentiles['p5']:.2f}, p95={summary.percentiles['p95']:.2f}"
        )
        return SimulationResult(
            type=spec.type,
            iterations=spec.iterations,
            summary=summary,
            scenarios=scenarios,
            sensitivities=tuple(sensitivities),
            recommendations=tuple(recommendations),
            seed=seed,
        )

    def _sample(self, spec: SimulationSpec, seed: Optional[int]) -> Tuple[np.ndarray, Draws]:
        chunk_size = max(1, self.config.chunk_size)
        sizes = [chunk_size] * (spec.iterations // chunk_size)
        if spec.iterations % chunk_size:
            sizes.append(spec.iterations % chunk_size)
        child_seeds = np.random.SeedSequence(seed).spawn(len(sizes))
        handler = SCENARIO_HANDLERS[spec.type]

        def run_chunk(job: Tuple[int, np.random.SeedSequence]) -> Tuple[np.ndarray, Draws]:
            size, child = job
            outcomes, draws = handler(spec, np.random.default_rng(child), size)
            for constraint in spec.constraints:
                outcomes = constraint.apply(outcomes)
            return outcomes, draws

        jobs = list(zip(sizes, child_seeds))
        workers = max(1, self.config.workers)
        logger.debug(f"Sampling {spec.iterations} iterations in {len(jobs)} chunks on {workers} workers")
        if workers == 1 or len(jobs) == 1:
            chunks = [run_chunk(job) for job in jobs]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                chunks = list(pool.map(run_chunk, jobs))

        outcomes = np.concatenate([c[0] for c in chunks])
        names = list(chunks[0][1])
        draws = {name: np.concatenate([c[1][name] for c in chunks]) for name in names}
        return outcomes, draws
