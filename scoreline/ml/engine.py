"""Prediction engine: context -> effective weights -> model or fallback.

predict_scores() only reads the snapshot cache and the health monitor, so it
never waits on the network and is safe to call concurrently for any number of
matches.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np

from scoreline.config import Settings
from scoreline.features.context import PredictionContext, build_prediction_context
from scoreline.features.weights import (
    EffectiveWeights,
    calculate_effective_weights,
    can_make_prediction,
    get_degradation_warning,
)
from scoreline.health import IntegrationHealthMonitor
from scoreline.ml.expected_goals import ExpectedGoalsModel
from scoreline.ml.fallback import FallbackPolicy
from scoreline.reference import MatchDirectory
from scoreline.registry import CapabilityRegistry
from scoreline.snapshots import SnapshotCache
from scoreline.telemetry import record_prediction
from scoreline.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class MatchNotFound(LookupError):
    """The match id is unknown to the reference directory."""


@dataclass(frozen=True)
class PredictionResult:
    match_id: int
    expected_home_goals: float
    expected_away_goals: float
    predicted_home_score: int
    predicted_away_score: int
    data_quality_score: float
    degradation_warning: Optional[str]
    used_fallback: bool
    effective_weights: EffectiveWeights
    predicted_at: datetime

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "expected_home_goals": round(self.expected_home_goals, 3),
            "expected_away_goals": round(self.expected_away_goals, 3),
            "predicted_home_score": self.predicted_home_score,
            "predicted_away_score": self.predicted_away_score,
            "data_quality_score": round(self.data_quality_score, 2),
            "degradation_warning": self.degradation_warning,
            "used_fallback": self.used_fallback,
            "effective_weights": self.effective_weights.to_dict(),
            "predicted_at": self.predicted_at.isoformat(),
        }


class PredictionEngine:
    def __init__(
        self,
        settings: Settings,
        cache: SnapshotCache,
        monitor: IntegrationHealthMonitor,
        registry: CapabilityRegistry,
        directory: MatchDirectory,
        clock: Optional[Clock] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.monitor = monitor
        self.registry = registry
        self.directory = directory
        self.clock = clock or SystemClock()
        self.model = ExpectedGoalsModel(settings.MODEL, rng=rng)
        self.fallback = FallbackPolicy(settings.FALLBACK, settings.MODEL)

    def build_context(self, match_id: int) -> PredictionContext:
        match = self.directory.get_match(match_id)
        if match is None:
            raise MatchNotFound(f"match {match_id} not found")
        return build_prediction_context(
            match=match,
            configured_weights=self.settings.WEIGHTS.as_dict(),
            cache=self.cache,
            monitor=self.monitor,
            registry=self.registry,
            now=self.clock.now(),
        )

    def predict_scores(self, match_id: int) -> PredictionResult:
        """
        Predict a scoreline for one match.

        Falls back to the heuristic policy when form is unusable or the data
        quality score is below MODEL.fallback_threshold. Never returns None.

        Raises:
            MatchNotFound: if the match id is unknown.
        """
        context = self.build_context(match_id)
        return self.predict_from_context(context)

    def predict_from_context(self, context: PredictionContext) -> PredictionResult:
        params = self.settings.MODEL
        effective = calculate_effective_weights(context)
        warning = get_degradation_warning(context, params.degradation_report_threshold)
        match = context.match

        if can_make_prediction(context, effective, params.fallback_threshold):
            estimate = self.model.predict(context, effective)
            result = PredictionResult(
                match_id=match.match_id,
                expected_home_goals=estimate.expected_home_goals,
                expected_away_goals=estimate.expected_away_goals,
                predicted_home_score=estimate.predicted_home_score,
                predicted_away_score=estimate.predicted_away_score,
                data_quality_score=effective.data_quality_score,
                degradation_warning=warning,
                used_fallback=False,
                effective_weights=effective,
                predicted_at=context.built_at,
            )
        else:
            fallback = self.fallback.predict(match)
            logger.info(
                f"[PREDICT] match={match.match_id} using fallback "
                f"(quality={effective.data_quality_score:.1f}, form_usable={context.can_use_form})"
            )
            result = PredictionResult(
                match_id=match.match_id,
                expected_home_goals=fallback.expected_home_goals,
                expected_away_goals=fallback.expected_away_goals,
                predicted_home_score=fallback.predicted_home_score,
                predicted_away_score=fallback.predicted_away_score,
                data_quality_score=effective.data_quality_score,
                degradation_warning=warning,
                used_fallback=True,
                effective_weights=effective,
                predicted_at=context.built_at,
            )

        if warning:
            logger.info(f"[PREDICT] match={match.match_id} {warning}")
        record_prediction("fallback" if result.used_fallback else "fused", result.data_quality_score)
        return result
