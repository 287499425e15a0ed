"""
Trade Spend Optimizer

Recommends a promotion spend level, expected ROI and a confidence score from
the promotion's categorical parameters and the aggregates of comparable past
promotions.

Pipeline:
1. Aggregate segment history (same category + store type), or fall back to
   global defaults when the segment has no history
2. Encode categoricals through lookup tables (unknown -> 0)
3. Standardize the 12-feature vector with the scaler learned at training
4. Apply the trained multi-output ridge regression -> (spend, ROI, confidence)
5. Clamp, then attach rule-based insights and risk factors

Also provides the promotion anomaly pass and the similar-promotion performance
forecast used by planners.

Copyright (c) 2024-2025 Tim Kaye / Local Cannabis Co.
All Rights Reserved. Proprietary and Confidential.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from sklearn.linear_model import Ridge
from sklearn.preprocessing import StandardScaler

from .errors import InsufficientDataError, InvalidInputError, NotTrainedError
from .signals import EPSILON

logger = logging.getLogger(__name__)


# =============================================================================
# LOOKUP TABLES
# =============================================================================

CATEGORY_CODES: Dict[str, int] = {
    "Beverages": 1,
    "Snacks": 2,
    "Dairy": 3,
    "Bakery": 4,
    "Frozen Foods": 5,
    "Personal Care": 6,
    "Household": 7,
    "Health & Beauty": 8,
}

STORE_TYPE_CODES: Dict[str, int] = {
    "Hypermarket": 1,
    "Supermarket": 2,
    "Convenience": 3,
    "Wholesale": 4,
}

DISCOUNT_TYPE_CODES: Dict[str, int] = {
    "PERCENTAGE": 1,
    "FIXED_AMOUNT": 2,
    "BOGO": 3,
    "VOLUME_DISCOUNT": 4,
}

FEATURE_NAMES = [
    "planned_spend",
    "discount_value",
    "duration",
    "seasonality",
    "category_code",
    "store_type_code",
    "discount_type_code",
    "units",
    "revenue",
    "actual_spend",
    "roi",
    "efficiency",
]

# Used when a segment has no history
DEFAULT_AGGREGATES = {
    "avg_spend": 100_000.0,
    "avg_units": 5_000.0,
    "avg_revenue": 250_000.0,
    "avg_roi": 1.5,
    "efficiency": 0.7,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class PromotionRecord:
    """A completed promotion with its outcome."""
    promotion_id: str
    category: str
    store_type: str
    discount_type: str
    discount_value: float
    duration: float
    seasonality: float
    planned_spend: float
    actual_spend: float
    revenue: float
    units: float
    roi: float

    def __post_init__(self):
        if not self.planned_spend > 0:
            raise InvalidInputError(
                f"Promotion {self.promotion_id}: planned_spend must be positive",
                details={"promotion_id": self.promotion_id, "planned_spend": self.planned_spend},
            )
        for name in ("discount_value", "duration", "seasonality", "actual_spend", "revenue", "units", "roi"):
            if not math.isfinite(getattr(self, name)):
                raise InvalidInputError(f"Promotion {self.promotion_id}: {name} must be finite")

    @property
    def spend_ratio(self) -> float:
        return self.actual_spend / self.planned_spend

    @property
    def efficiency(self) -> float:
        """ROI weighted by spend utilization."""
        return self.roi * self.spend_ratio

    @property
    def confidence_label(self) -> float:
        spend_variance = abs(1 - self.spend_ratio)
        roi_score = min(1.0, self.roi / 2)
        return (1 - spend_variance) * roi_score

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PromotionRecord":
        try:
            return cls(
                promotion_id=str(data.get("promotion_id", "")),
                category=str(data["category"]),
                store_type=str(data["store_type"]),
                discount_type=str(data["discount_type"]),
                discount_value=float(data["discount_value"]),
                duration=float(data["duration"]),
                seasonality=float(data.get("seasonality", 0.5)),
                planned_spend=float(data["planned_spend"]),
                actual_spend=float(data["actual_spend"]),
                revenue=float(data["revenue"]),
                units=float(data["units"]),
                roi=float(data["roi"]),
            )
        except KeyError as e:
            raise InvalidInputError(f"Promotion record is missing {e}") from e
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed promotion record: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promotion_id": self.promotion_id,
            "category": self.category,
            "store_type": self.store_type,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "duration": self.duration,
            "seasonality": self.seasonality,
            "planned_spend": self.planned_spend,
            "actual_spend": self.actual_spend,
            "revenue": self.revenue,
            "units": self.units,
            "roi": self.roi,
        }


@dataclass(frozen=True)
class OptimizationRequest:
    category: str
    store_type: str
    discount_type: str
    discount_value: float
    duration: float
    seasonality_factor: float = 0.5
    history: Tuple[PromotionRecord, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OptimizationRequest":
        try:
            return cls(
                category=str(data["category"]),
                store_type=str(data["store_type"]),
                discount_type=str(data["discount_type"]),
                discount_value=float(data["discount_value"]),
                duration=float(data["duration"]),
                seasonality_factor=float(data.get("seasonality_factor", 0.5)),
                history=tuple(PromotionRecord.from_dict(r) for r in data.get("history") or []),
            )
        except KeyError as e:
            raise InvalidInputError(f"Optimization request is missing {e}") from e
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed optimization request: {e}") from e


@dataclass(frozen=True)
class OptimizationResult:
    recommended_spend: float
    expected_roi: float
    confidence_score: float
    insights: Tuple[str, ...] = ()
    risk_factors: Tuple[str, ...] = ()
    aggregates_source: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommended_spend": self.recommended_spend,
            "expected_roi": self.expected_roi,
            "confidence_score": self.confidence_score,
            "insights": list(self.insights),
            "risk_factors": list(self.risk_factors),
            "aggregates_source": self.aggregates_source,
        }


@dataclass(frozen=True)
class SegmentAggregates:
    avg_spend: float
    avg_units: float
    avg_revenue: float
    avg_roi: float
    efficiency: float
    source: str = "default"

    @classmethod
    def from_history(cls, records: Sequence[PromotionRecord]) -> "SegmentAggregates":
        if not records:
            return cls(source="default", **DEFAULT_AGGREGATES)
        return cls(
            avg_spend=float(np.mean([r.actual_spend for r in records])),
            avg_units=float(np.mean([r.units for r in records])),
            avg_revenue=float(np.mean([r.revenue for r in records])),
            avg_roi=float(np.mean([r.roi for r in records])),
            efficiency=float(np.mean([r.efficiency for r in records])),
            source="segment",
        )


@dataclass(frozen=True)
class OptimizerModel:
    """Trained regression parameters plus the encodings they were fitted with."""
    feature_mean: Tuple[float, ...]
    feature_scale: Tuple[float, ...]
    coefficients: Tuple[Tuple[float, ...], ...]  # 3 x 12
    intercepts: Tuple[float, ...]  # 3
    category_codes: Mapping[str, int] = field(default_factory=lambda: dict(CATEGORY_CODES))
    store_type_codes: Mapping[str, int] = field(default_factory=lambda: dict(STORE_TYPE_CODES))
    discount_type_codes: Mapping[str, int] = field(default_factory=lambda: dict(DISCOUNT_TYPE_CODES))
    n_samples: int = 0

    def predict(self, features: np.ndarray) -> np.ndarray:
        scaled = (features - np.asarray(self.feature_mean)) / np.asarray(self.feature_scale)
        return scaled @ np.asarray(self.coefficients).T + np.asarray(self.intercepts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_mean": list(self.feature_mean),
            "feature_scale": list(self.feature_scale),
            "coefficients": [list(row) for row in self.coefficients],
            "intercepts": list(self.intercepts),
            "category_codes": dict(self.category_codes),
            "store_type_codes": dict(self.store_type_codes),
            "discount_type_codes": dict(self.discount_type_codes),
            "n_samples": self.n_samples,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OptimizerModel":
        return cls(
            feature_mean=tuple(float(v) for v in data["feature_mean"]),
            feature_scale=tuple(float(v) for v in data["feature_scale"]),
            coefficients=tuple(tuple(float(v) for v in row) for row in data["coefficients"]),
            intercepts=tuple(float(v) for v in data["intercepts"]),
            category_codes={k: int(v) for k, v in data.get("category_codes", CATEGORY_CODES).items()},
            store_type_codes={k: int(v) for k, v in data.get("store_type_codes", STORE_TYPE_CODES).items()},
            discount_type_codes={k: int(v) for k, v in data.get("discount_type_codes", DISCOUNT_TYPE_CODES).items()},
            n_samples=int(data.get("n_samples", 0)),
        )


@dataclass(frozen=True)
class PromotionAnomaly:
    index: int
    promotion_id: str
    score: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "promotion_id": self.promotion_id,
            "score": self.score,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PlannedPromotion:
    category: str
    store_type: str
    planned_spend: float
    discount_type: str
    discount_value: float
    duration: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlannedPromotion":
        try:
            return cls(
                category=str(data["category"]),
                store_type=str(data["store_type"]),
                planned_spend=float(data["planned_spend"]),
                discount_type=str(data["discount_type"]),
                discount_value=float(data["discount_value"]),
                duration=float(data["duration"]),
            )
        except KeyError as e:
            raise InvalidInputError(f"Planned promotion is missing {e}") from e
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed planned promotion: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "store_type": self.store_type,
            "planned_spend": self.planned_spend,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class PerformanceForecast:
    promotion: PlannedPromotion
    expected_revenue: float
    expected_units: float
    expected_roi: float
    roi_lower: float
    roi_upper: float
    similar_promotions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promotion": self.promotion.to_dict(),
            "expected_revenue": self.expected_revenue,
            "expected_units": self.expected_units,
            "expected_roi": self.expected_roi,
            "confidence_interval": {"lower": self.roi_lower, "upper": self.roi_upper},
            "similar_promotions": self.similar_promotions,
        }


# =============================================================================
# OPTIMIZER
# =============================================================================

class SpendOptimizer:
    """
    Spend recommendation over a trained OptimizerModel.

    Usage:
        model = SpendOptimizer.train(records)
        optimizer = SpendOptimizer(model)
        result = optimizer.optimize(request)
    """

    def __init__(self, model: Optional[OptimizerModel] = None):
        self.model = model

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    @staticmethod
    def train(
        records: Sequence[PromotionRecord],
        alpha: float = 1.0,
        category_codes: Optional[Mapping[str, int]] = None,
        store_type_codes: Optional[Mapping[str, int]] = None,
        discount_type_codes: Optional[Mapping[str, int]] = None,
    ) -> OptimizerModel:
        """Fit the standardized ridge regression. Custom tables extend the defaults."""
        records = list(records)
        if not records:
            raise InsufficientDataError("Optimizer training needs at least one promotion record")

        categories = {**CATEGORY_CODES, **(category_codes or {})}
        store_types = {**STORE_TYPE_CODES, **(store_type_codes or {})}
        discount_types = {**DISCOUNT_TYPE_CODES, **(discount_type_codes or {})}

        X = np.vstack([
            _feature_vector(
                planned_spend=r.planned_spend,
                discount_value=r.discount_value,
                duration=r.duration,
                seasonality=r.seasonality,
                category_code=categories.get(r.category, 0),
                store_type_code=store_types.get(r.store_type, 0),
                discount_type_code=discount_types.get(r.discount_type, 0),
                units=r.units,
                revenue=r.revenue,
                actual_spend=r.actual_spend,
                roi=r.roi,
                efficiency=r.efficiency,
            )
            for r in records
        ])
        y = np.array([[r.actual_spend, r.roi, r.confidence_label] for r in records], dtype=float)

        scaler = StandardScaler()
        X_scaled = scaler.fit_transform(X)
        regression = Ridge(alpha=alpha)
        regression.fit(X_scaled, y)

        # StandardScaler leaves zero-variance columns with scale 1.0
        model = OptimizerModel(
            feature_mean=tuple(float(v) for v in scaler.mean_),
            feature_scale=tuple(float(v) for v in scaler.scale_),
            coefficients=tuple(tuple(float(v) for v in row) for row in regression.coef_),
            intercepts=tuple(float(v) for v in regression.intercept_),
            category_codes=categories,
            store_type_codes=store_types,
            discount_type_codes=discount_types,
            n_samples=len(records),
        )
        logger.info(f"Trained spend optimizer on {len(records)} promotions")
        return model

    # -------------------------------------------------------------------------
    # Optimization
    # -------------------------------------------------------------------------

    def optimize(self, request: OptimizationRequest) -> OptimizationResult:
        if self.model is None:
            raise NotTrainedError("Spend optimizer has not been trained")
        for name in ("discount_value", "duration", "seasonality_factor"):
            if not math.isfinite(getattr(request, name)):
                raise InvalidInputError(f"{name} must be finite")

        segment = [
            r for r in request.history
            if r.category == request.category and r.store_type == request.store_type
        ]
        aggregates = SegmentAggregates.from_history(segment)

        features = _feature_vector(
            planned_spend=aggregates.avg_spend,
            discount_value=request.discount_value,
            duration=request.duration,
            seasonality=request.seasonality_factor,
            category_code=self.model.category_codes.get(request.category, 0),
            store_type_code=self.model.store_type_codes.get(request.store_type, 0),
            discount_type_code=self.model.discount_type_codes.get(request.discount_type, 0),
            units=aggregates.avg_units,
            revenue=aggregates.avg_revenue,
            actual_spend=aggregates.avg_spend,
            roi=aggregates.avg_roi,
            efficiency=aggregates.efficiency,
        )
        spend, roi, confidence = (float(v) for v in self.model.predict(features.reshape(1, -1))[0])

        spend = max(0.0, spend)
        roi = max(0.0, roi)
        confidence = min(1.0, max(0.0, confidence))

        logger.debug(
            f"Optimize {request.category}/{request.store_type}: spend={spend:.0f}, "
            f"roi={roi:.2f}, confidence={confidence:.2f} ({aggregates.source} aggregates)"
        )

        return OptimizationResult(
            recommended_spend=spend,
            expected_roi=roi,
            confidence_score=confidence,
            insights=tuple(_insights(request, roi)),
            risk_factors=tuple(_risk_factors(request, confidence, aggregates)),
            aggregates_source=aggregates.source,
        )


def _feature_vector(**values: float) -> np.ndarray:
    return np.array([float(values[name]) for name in FEATURE_NAMES], dtype=float)


def _insights(request: OptimizationRequest, expected_roi: float) -> List[str]:
    insights = []
    if expected_roi > 2:
        insights.append("High ROI expected - consider increasing investment")
    elif expected_roi < 1:
        insights.append("Low ROI expected - review promotion mechanics")
    if request.discount_value > 25:
        insights.append("Deep discount may erode margins - monitor profitability")
    if request.duration > 30:
        insights.append("Long promotion duration - consider shorter bursts for urgency")
    if request.seasonality_factor > 0.8:
        insights.append("High seasonality period - leverage seasonal demand")
    return insights


def _risk_factors(request: OptimizationRequest, confidence: float, aggregates: SegmentAggregates) -> List[str]:
    risks = []
    if confidence < 0.6:
        risks.append("Low confidence - limited historical data for this scenario")
    if request.discount_value > 30:
        risks.append("Deep discounts may train customers to wait for promotions")
    if request.duration < 7:
        risks.append("Short duration may limit reach and awareness")
    if aggregates.source == "default":
        risks.append("No segment history - recommendation based on global defaults")
    return risks


# =============================================================================
# PROMOTION ANALYSIS
# =============================================================================

def _z_scores(values: np.ndarray) -> np.ndarray:
    std = float(values.std())
    if std < EPSILON:
        # A constant column has no outliers
        return np.zeros_like(values)
    return np.abs(values - values.mean()) / std


def detect_promotion_anomalies(
    records: Sequence[PromotionRecord],
    z_threshold: float = 3.0,
) -> List[PromotionAnomaly]:
    """Flag promotions with extreme ROI, extreme spend variance, or overspend with poor ROI."""
    records = list(records)
    if not records:
        return []

    roi = np.array([r.roi for r in records], dtype=float)
    spend_ratio = np.array([r.spend_ratio for r in records], dtype=float)
    roi_z = _z_scores(roi)
    spend_z = _z_scores(spend_ratio)

    anomalies: List[PromotionAnomaly] = []
    for i, record in enumerate(records):
        if roi_z[i] > z_threshold:
            anomalies.append(PromotionAnomaly(
                index=i,
                promotion_id=record.promotion_id,
                score=float(roi_z[i]),
                reason=f"Unusual ROI: {record.roi:.2f} ({roi_z[i]:.2f} std devs from mean)",
            ))
        if spend_z[i] > z_threshold:
            anomalies.append(PromotionAnomaly(
                index=i,
                promotion_id=record.promotion_id,
                score=float(spend_z[i]),
                reason=f"Unusual spend variance: {(record.spend_ratio - 1) * 100:.1f}%",
            ))
        if record.roi < 0.5 and record.actual_spend > record.planned_spend * 1.2:
            anomalies.append(PromotionAnomaly(
                index=i,
                promotion_id=record.promotion_id,
                score=0.8,
                reason="High spend with low ROI - potential inefficiency",
            ))

    if anomalies:
        logger.info(f"Flagged {len(anomalies)} anomalies across {len(records)} promotions")
    return anomalies


def forecast_promotion_performance(
    history: Sequence[PromotionRecord],
    planned: Sequence[PlannedPromotion],
    discount_tolerance: float = 5.0,
) -> List[PerformanceForecast]:
    """Expected revenue/units/ROI for planned promotions from similar past ones.

    Similar = same category and store type with a discount within
    `discount_tolerance` points. Without similar promotions the forecast uses
    general rules of thumb (2.5x spend revenue, spend/10 units, ROI 1.5).
    """
    forecasts = []
    for promotion in planned:
        similar = [
            r for r in history
            if r.category == promotion.category
            and r.store_type == promotion.store_type
            and abs(r.discount_value - promotion.discount_value) < discount_tolerance
        ]
        if similar:
            roi = np.array([r.roi for r in similar], dtype=float)
            avg_roi = float(roi.mean())
            std_roi = float(roi.std())
            forecasts.append(PerformanceForecast(
                promotion=promotion,
                expected_revenue=float(np.mean([r.revenue for r in similar])) * (1 + promotion.discount_value / 100),
                expected_units=float(np.mean([r.units for r in similar])) * (1 + promotion.discount_value / 50),
                expected_roi=avg_roi,
                roi_lower=max(0.0, avg_roi - 1.96 * std_roi),
                roi_upper=avg_roi + 1.96 * std_roi,
                similar_promotions=len(similar),
            ))
        else:
            forecasts.append(PerformanceForecast(
                promotion=promotion,
                expected_revenue=promotion.planned_spend * 2.5,
                expected_units=promotion.planned_spend / 10,
                expected_roi=1.5,
                roi_lower=0.8,
                roi_upper=2.2,
            ))
    return forecasts
