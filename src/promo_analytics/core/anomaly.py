"""
Multi-Signal Anomaly Scorer

Scores each observation with three independent signals, each in [0, 1]:

- Statistical: z-score against the metric's baseline, saturating at |z| = 4
- Pattern: reconstruction error of the observation's engineered features under
  a low-dimensional PCA model of the training batch
- Contextual: explicit business rules (negative revenue, fractional units,
  large miss against an expected value, off-hours transactions)

Fusion flags an observation when the strongest signal exceeds 0.7 or the mean
of the three exceeds 0.5. The reported score is the mean; the strongest signal
supplies the type, description and recommendation, and drives severity after
the metric's business-impact multiplier is applied.

Training is a pure function of the batch: the same batch always produces the
same AnomalyModel, and the model is plain data that round-trips through JSON.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from sklearn.decomposition import PCA

from .config import AnomalyConfig
from .errors import InvalidInputError
from .signals import EPSILON, coerce_timestamp, signed_log1p

logger = logging.getLogger(__name__)


class AnomalyType(str, Enum):
    """What kind of deviation a verdict reports."""

    NONE = "none"
    """No signal fired."""

    STATISTICAL_OUTLIER = "statistical_outlier"
    """Value far from the metric's historical mean."""

    PATTERN_ANOMALY = "pattern_anomaly"
    """Feature combination the pattern model cannot reconstruct."""

    BUSINESS_RULE_VIOLATION = "business_rule_violation"
    """Value that is impossible for the metric (negative revenue)."""

    DATA_QUALITY_ISSUE = "data_quality_issue"
    """Value with the wrong shape for the metric (fractional unit counts)."""

    EXPECTATION_VIOLATION = "expectation_violation"
    """Value far from the caller-supplied expected value."""

    TEMPORAL_ANOMALY = "temporal_anomaly"
    """Transactional activity outside operating hours."""


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def from_score(cls, adjusted: float) -> "Severity":
        if adjusted > 0.9:
            return cls.CRITICAL
        if adjusted > 0.7:
            return cls.HIGH
        if adjusted > 0.5:
            return cls.MEDIUM
        return cls.LOW


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]

SIGNALS = ("statistical", "pattern", "contextual")


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class AnomalyObservation:
    timestamp: datetime
    metric: str
    value: float
    expected_value: Optional[float] = None
    store_id: Optional[str] = None
    product_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnomalyObservation":
        for key in ("timestamp", "metric", "value"):
            if key not in data:
                raise InvalidInputError(f"Observation is missing '{key}'")
        try:
            value = float(data["value"])
            expected = data.get("expected_value")
            expected = float(expected) if expected is not None else None
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Non-numeric observation value: {e}") from e
        return cls(
            timestamp=coerce_timestamp(data["timestamp"]),
            metric=str(data["metric"]),
            value=value,
            expected_value=expected,
            store_id=data.get("store_id"),
            product_id=data.get("product_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "metric": self.metric,
            "value": self.value,
            "expected_value": self.expected_value,
            "store_id": self.store_id,
            "product_id": self.product_id,
        }


@dataclass(frozen=True)
class SignalReading:
    """One signal's score plus the explanation it would contribute."""
    score: float
    anomaly_type: AnomalyType = AnomalyType.NONE
    description: str = ""
    recommendation: str = ""


@dataclass(frozen=True)
class AnomalyVerdict:
    is_anomaly: bool
    score: float
    severity: Severity
    source_signal: str
    anomaly_type: AnomalyType
    description: str
    recommendation: str
    signal_scores: Mapping[str, float] = field(default_factory=dict)
    observation: Optional[AnomalyObservation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_anomaly": self.is_anomaly,
            "score": self.score,
            "severity": self.severity.value,
            "source_signal": self.source_signal,
            "anomaly_type": self.anomaly_type.value,
            "description": self.description,
            "recommendation": self.recommendation,
            "signal_scores": dict(self.signal_scores),
            "observation": self.observation.to_dict() if self.observation else None,
        }


@dataclass(frozen=True)
class MetricBaseline:
    mean: float
    std: float
    count: int

    def z_score(self, value: float) -> float:
        return (value - self.mean) / max(self.std, EPSILON)


@dataclass(frozen=True)
class AnomalyModel:
    """Learned state of the scorer: per-metric baselines + pattern model.

    The pattern model is stored as min-max scaler bounds and PCA mean and
    components, so scoring needs nothing but numpy.
    """
    baselines: Mapping[str, MetricBaseline] = field(default_factory=dict)
    feature_min: Tuple[float, ...] = ()
    feature_max: Tuple[float, ...] = ()
    pca_mean: Tuple[float, ...] = ()
    pca_components: Tuple[Tuple[float, ...], ...] = ()
    n_samples: int = 0

    @property
    def has_pattern_model(self) -> bool:
        return bool(self.pca_components)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baselines": {
                metric: {"mean": b.mean, "std": b.std, "count": b.count}
                for metric, b in sorted(self.baselines.items())
            },
            "feature_min": list(self.feature_min),
            "feature_max": list(self.feature_max),
            "pca_mean": list(self.pca_mean),
            "pca_components": [list(row) for row in self.pca_components],
            "n_samples": self.n_samples,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnomalyModel":
        return cls(
            baselines={
                metric: MetricBaseline(mean=float(b["mean"]), std=float(b["std"]), count=int(b["count"]))
                for metric, b in dict(data.get("baselines", {})).items()
            },
            feature_min=tuple(float(v) for v in data.get("feature_min", [])),
            feature_max=tuple(float(v) for v in data.get("feature_max", [])),
            pca_mean=tuple(float(v) for v in data.get("pca_mean", [])),
            pca_components=tuple(tuple(float(v) for v in row) for row in data.get("pca_components", [])),
            n_samples=int(data.get("n_samples", 0)),
        )


# =============================================================================
# FEATURES
# =============================================================================

FEATURE_NAMES = [
    "value",
    "hour",
    "day_of_week",
    "day_of_month",
    "month",
    "expected_value",
    "metric_code",
    "log_value",
    "is_positive",
    "business_hours",
]


def observation_features(obs: AnomalyObservation, cfg: Optional[AnomalyConfig] = None) -> np.ndarray:
    cfg = cfg or AnomalyConfig()
    ts = obs.timestamp
    start, end = cfg.business_hours
    expected = obs.expected_value if obs.expected_value is not None else obs.value
    return np.array(
        [
            obs.value,
            ts.hour,
            ts.weekday(),
            ts.day,
            ts.month,
            expected,
            cfg.metric_codes.get(obs.metric, 0),
            float(signed_log1p(obs.value)),
            1.0 if obs.value > 0 else 0.0,
            1.0 if start <= ts.hour <= end else 0.0,
        ],
        dtype=float,
    )


def _scale(features: np.ndarray, mins: np.ndarray, maxs: np.ndarray) -> np.ndarray:
    span = maxs - mins
    safe = np.where(span > EPSILON, span, 1.0)
    # Constant training columns carry no information; they map to 0
    return np.where(span > EPSILON, (features - mins) / safe, 0.0)


# =============================================================================
# TRAINING
# =============================================================================

def train_anomaly_model(
    batch: Sequence[AnomalyObservation],
    cfg: Optional[AnomalyConfig] = None,
) -> AnomalyModel:
    """Fit per-metric baselines and the pattern model on a historical batch."""
    cfg = cfg or AnomalyConfig()
    observations = list(batch)
    if not observations:
        raise InvalidInputError("Training batch must contain at least one observation")
    for obs in observations:
        if not math.isfinite(obs.value):
            raise InvalidInputError(f"Non-finite value for {obs.metric} at {obs.timestamp}")

    grouped: Dict[str, List[float]] = {}
    for obs in observations:
        grouped.setdefault(obs.metric, []).append(obs.value)
    baselines = {
        metric: MetricBaseline(
            mean=float(np.mean(values)),
            std=float(np.std(values)),
            count=len(values),
        )
        for metric, values in sorted(grouped.items())
    }

    features = np.vstack([observation_features(o, cfg) for o in observations])
    mins = features.min(axis=0)
    maxs = features.max(axis=0)

    pca_mean: Tuple[float, ...] = ()
    pca_components: Tuple[Tuple[float, ...], ...] = ()
    n_components = min(cfg.pattern_components, features.shape[0] - 1, features.shape[1])
    if n_components >= 1:
        scaled = _scale(features, mins, maxs)
        pca = PCA(n_components=n_components, svd_solver="full")
        pca.fit(scaled)
        pca_mean = tuple(float(v) for v in pca.mean_)
        pca_components = tuple(tuple(float(v) for v in row) for row in pca.components_)
    else:
        logger.warning("Training batch too small for the pattern model; pattern signal disabled")

    model = AnomalyModel(
        baselines=baselines,
        feature_min=tuple(float(v) for v in mins),
        feature_max=tuple(float(v) for v in maxs),
        pca_mean=pca_mean,
        pca_components=pca_components,
        n_samples=len(observations),
    )
    logger.info(
        f"Trained anomaly model on {len(observations)} observations, "
        f"{len(baselines)} metrics, pattern components={len(pca_components)}"
    )
    return model


# =============================================================================
# SCORER
# =============================================================================

class AnomalyScorer:
    """
    Scores observations against a trained AnomalyModel.

    An untrained scorer still runs: statistical and pattern signals read 0 and
    only the contextual rules can fire.

    Usage:
        scorer = AnomalyScorer(train_anomaly_model(history))
        verdict = scorer.detect(observation)
        for alert in scorer.detect_stream(feed):
            ...
    """

    def __init__(self, model: Optional[AnomalyModel] = None, config: Optional[AnomalyConfig] = None):
        self.model = model or AnomalyModel()
        self.config = config or AnomalyConfig()

    def detect(
        self,
        observations: Union[AnomalyObservation, Sequence[AnomalyObservation]],
    ) -> Union[AnomalyVerdict, List[AnomalyVerdict]]:
        """Verdict for one observation, or a list of verdicts for a list."""
        if isinstance(observations, AnomalyObservation):
            return self.score(observations)
        return [self.score(obs) for obs in observations]

    def detect_stream(self, observations: Iterable[AnomalyObservation]) -> Iterator[AnomalyVerdict]:
        """Lazily score a feed, yielding only the anomalous verdicts."""
        for obs in observations:
            verdict = self.score(obs)
            if verdict.is_anomaly:
                yield verdict

    def score(self, obs: AnomalyObservation) -> AnomalyVerdict:
        if not isinstance(obs, AnomalyObservation):
            raise InvalidInputError(f"Expected AnomalyObservation, got {type(obs).__name__}")
        if not math.isfinite(obs.value):
            raise InvalidInputError(f"Non-finite value for {obs.metric} at {obs.timestamp}")

        readings = {
            "statistical": self.statistical_signal(obs),
            "pattern": self.pattern_signal(obs),
            "contextual": self.contextual_signal(obs),
        }
        scores = {name: r.score for name, r in readings.items()}
        max_score = max(scores.values())
        mean_score = sum(scores.values()) / len(scores)
        is_anomaly = max_score > self.config.max_signal_threshold or mean_score > self.config.mean_signal_threshold

        # Ties go to the first signal in SIGNALS order
        source = next(name for name in SIGNALS if scores[name] == max_score)
        reading = readings[source]
        impact = self.config.impact_multipliers.get(obs.metric, 1.0)
        severity = Severity.from_score(max_score * impact)

        if is_anomaly:
            logger.debug(
                f"Anomaly on {obs.metric} at {obs.timestamp}: source={source}, "
                f"max={max_score:.2f}, mean={mean_score:.2f}, severity={severity.value}"
            )

        return AnomalyVerdict(
            is_anomaly=is_anomaly,
            score=mean_score,
            severity=severity,
            source_signal=source,
            anomaly_type=reading.anomaly_type if max_score > 0 else AnomalyType.NONE,
            description=reading.description or "No deviation detected",
            recommendation=reading.recommendation or "No action required",
            signal_scores=scores,
            observation=obs,
        )

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def statistical_signal(self, obs: AnomalyObservation) -> SignalReading:
        baseline = self.model.baselines.get(obs.metric)
        if baseline is None:
            return SignalReading(score=0.0)

        z = abs(baseline.z_score(obs.value))
        score = min(1.0, z / self.config.z_saturation)
        if z > 3:
            return SignalReading(
                score=score,
                anomaly_type=AnomalyType.STATISTICAL_OUTLIER,
                description=f"Value {obs.value:g} is {z:.1f} standard deviations from the {obs.metric} mean",
                recommendation="Investigate the unusual spike or drop",
            )
        if z > 2:
            return SignalReading(
                score=score,
                anomaly_type=AnomalyType.STATISTICAL_OUTLIER,
                description=f"Value {obs.value:g} shows a moderate deviation from normal",
                recommendation="Monitor for continued deviation",
            )
        return SignalReading(score=score, anomaly_type=AnomalyType.STATISTICAL_OUTLIER)

    def pattern_signal(self, obs: AnomalyObservation) -> SignalReading:
        if not self.model.has_pattern_model:
            return SignalReading(score=0.0)

        features = observation_features(obs, self.config)
        scaled = _scale(
            features,
            np.asarray(self.model.feature_min, dtype=float),
            np.asarray(self.model.feature_max, dtype=float),
        )
        mean = np.asarray(self.model.pca_mean, dtype=float)
        components = np.asarray(self.model.pca_components, dtype=float)
        centered = scaled - mean
        reconstructed = (centered @ components.T) @ components + mean
        mse = float(np.mean((scaled - reconstructed) ** 2))
        score = min(1.0, self.config.pattern_error_scale * mse)

        if score > 0.7:
            return SignalReading(
                score=score,
                anomaly_type=AnomalyType.PATTERN_ANOMALY,
                description="Unusual combination of value, timing and context",
                recommendation="Review recent changes in business operations",
            )
        if score > 0.5:
            return SignalReading(
                score=score,
                anomaly_type=AnomalyType.PATTERN_ANOMALY,
                description="Moderate pattern deviation detected",
                recommendation="Monitor for pattern persistence",
            )
        return SignalReading(score=score, anomaly_type=AnomalyType.PATTERN_ANOMALY)

    def contextual_signal(self, obs: AnomalyObservation) -> SignalReading:
        cfg = self.config
        reading = SignalReading(score=0.0)

        if obs.metric in cfg.non_negative_metrics and obs.value < 0:
            reading = SignalReading(
                score=1.0,
                anomaly_type=AnomalyType.BUSINESS_RULE_VIOLATION,
                description=f"Negative {obs.metric} detected",
                recommendation="Check for data entry errors or system issues",
            )
        elif obs.metric in cfg.integral_metrics and not float(obs.value).is_integer():
            reading = SignalReading(
                score=0.8,
                anomaly_type=AnomalyType.DATA_QUALITY_ISSUE,
                description=f"Fractional {obs.metric} detected",
                recommendation="Verify the counting methodology",
            )
        elif obs.expected_value:
            deviation = abs(obs.value - obs.expected_value) / abs(obs.expected_value)
            if deviation > cfg.expectation_tolerance:
                reading = SignalReading(
                    score=0.7,
                    anomaly_type=AnomalyType.EXPECTATION_VIOLATION,
                    description=f"Value deviates {deviation * 100:.1f}% from expected",
                    recommendation="Review forecast assumptions and actual conditions",
                )

        hour = obs.timestamp.hour
        off_hours = hour < cfg.off_hours_end or hour > cfg.off_hours_start
        if obs.metric in cfg.transactional_metrics and obs.value > 0 and off_hours and reading.score < 0.6:
            reading = SignalReading(
                score=0.6,
                anomaly_type=AnomalyType.TEMPORAL_ANOMALY,
                description="Unusual activity during off-hours",
                recommendation="Verify store operating hours and transaction timing",
            )
        return reading
