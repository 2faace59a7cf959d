"""Weight redistribution under partial data availability.

Let total_configured be the sum of configured weights over non-zero factors and
total_available the same sum over usable factors. Every usable factor is
scaled by total_configured / total_available and every unusable factor gets
zero, so the effective weights always add back up to total_configured.

When nothing is usable the scale stays 1.0 and every effective weight is
zero; the engine then defers to the fallback policy.

Example (form 0.30, xG 0.30, odds 0.20, home 0.20, xG unusable):
    scale = 1.0 / 0.7
    form 0.4286, odds 0.2857, home 0.2857, xG 0.0   -> quality 70
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from scoreline.features.context import PredictionContext
from scoreline.models import Factor

DEFAULT_FALLBACK_THRESHOLD = 50.0
DEFAULT_REPORT_THRESHOLD = 0.10


@dataclass(frozen=True)
class EffectiveWeights:
    weights: Mapping[Factor, float]
    data_quality_score: float
    total_configured: float
    total_available: float
    configured_sources: int
    available_sources: int
    scale: float

    def get(self, factor: Factor) -> float:
        return self.weights.get(factor, 0.0)

    @property
    def total(self) -> float:
        return sum(self.weights.values())

    def to_dict(self) -> dict:
        return {
            "weights": {f.value: round(w, 4) for f, w in self.weights.items()},
            "data_quality_score": round(self.data_quality_score, 2),
            "configured_sources": self.configured_sources,
            "available_sources": self.available_sources,
        }


def redistribute(
    configured: Mapping[Factor, float],
    availability: Mapping[Factor, bool],
) -> EffectiveWeights:
    total_configured = 0.0
    total_available = 0.0
    configured_sources = 0
    available_sources = 0
    for factor, weight in configured.items():
        if weight < 0:
            raise ValueError(f"weight for {factor.value} must be non-negative, got {weight}")
        if weight <= 0:
            continue
        total_configured += weight
        configured_sources += 1
        if availability.get(factor, False):
            total_available += weight
            available_sources += 1

    if total_configured > 0 and total_available > 0:
        scale = total_configured / total_available
    else:
        scale = 1.0

    weights = {
        factor: (weight * scale if weight > 0 and availability.get(factor, False) else 0.0)
        for factor, weight in configured.items()
    }

    if total_configured > 0:
        quality = 100.0 * total_available / total_configured
    else:
        quality = 100.0

    return EffectiveWeights(
        weights=weights,
        data_quality_score=quality,
        total_configured=total_configured,
        total_available=total_available,
        configured_sources=configured_sources,
        available_sources=available_sources,
        scale=scale,
    )


def calculate_effective_weights(context: PredictionContext) -> EffectiveWeights:
    return redistribute(context.configured_weights, context.availability)


def can_make_prediction(
    context: PredictionContext,
    effective: EffectiveWeights,
    threshold: float = DEFAULT_FALLBACK_THRESHOLD,
) -> bool:
    """Form must be usable and enough configured weight must be backed by data."""
    return context.can_use_form and effective.data_quality_score >= threshold


def unavailable_factors(
    context: PredictionContext,
    threshold: float = DEFAULT_REPORT_THRESHOLD,
) -> list[Factor]:
    """Unusable factors whose configured weight exceeds threshold, in enum order."""
    return [
        factor for factor in Factor
        if context.configured_weights.get(factor, 0.0) > threshold
        and not context.can_use(factor)
    ]


def get_degradation_warning(
    context: PredictionContext,
    threshold: float = DEFAULT_REPORT_THRESHOLD,
) -> Optional[str]:
    missing = unavailable_factors(context, threshold)
    if not missing:
        return None
    return "Degraded prediction: " + ", ".join(f"{f.value} data unavailable" for f in missing)
