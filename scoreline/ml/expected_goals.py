"""Expected-goals model: ordered adjustment chain over the usable factors.

Order (fixed, so results are reproducible):
    1. league-average baselines
    2. form                 x (1 + (form_score / 50 - 1) * w), then blend
                            toward goals per match and nudge by current streak
    3. home advantage       home x (1 + boost * w), away x (1 - penalty * w)
    4. attack / defense     blend toward xG per match, then scale by opponent xGA
    5. market nudge         favourite side x (1 + (p - anchor) * w)
    6. squad strength       x (1 - (1 - modifier) * w), modifier in [floor, 1]
    7. relative rating      Elo diff / scale, home x (1 + n * w), away x (1 - n * w)
    8. late season          from late_season_matchday on, regress toward the mean

w is the factor's effective weight capped at 1.0, so a factor that lost its
weight during redistribution is a no-op and un-normalized weights can never
flip the sign of a step. Optional jitter, clamping and rounding follow.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from scoreline.config import ModelParameters, RoundingPolicy
from scoreline.features.context import PredictionContext
from scoreline.features.squad import squad_strength_modifier
from scoreline.features.weights import EffectiveWeights
from scoreline.ml.devig import market_view
from scoreline.models import Factor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoalsEstimate:
    expected_home_goals: float
    expected_away_goals: float
    predicted_home_score: int
    predicted_away_score: int
    # (step, home, away) after each adjustment
    trace: tuple = ()


def round_goals(value: float, policy: RoundingPolicy) -> int:
    if policy == RoundingPolicy.FLOOR:
        return int(math.floor(value))
    if policy == RoundingPolicy.CEIL:
        return int(math.ceil(value))
    # Half-up, not banker's rounding
    return int(math.floor(value + 0.5))


class ExpectedGoalsModel:
    def __init__(self, params: ModelParameters, rng: Optional[np.random.Generator] = None):
        self.params = params
        self.rng = rng

    def adjust(self, context: PredictionContext, weights: EffectiveWeights) -> tuple[float, float, tuple]:
        """Run the deterministic chain. Returns (home, away, trace)."""
        p = self.params
        home, away = p.home_baseline, p.away_baseline
        trace = [("baseline", home, away)]

        def weight(factor: Factor) -> float:
            return min(weights.get(factor), 1.0)

        w = weight(Factor.FORM)
        if w > 0 and context.can_use(Factor.FORM):
            home, away = self._form(context, home, away, w)
            trace.append(("form", home, away))

        w = weight(Factor.HOME_ADVANTAGE)
        if w > 0:
            home *= 1 + p.home_advantage_boost * w
            away *= 1 - p.away_travel_penalty * w
            trace.append(("home_advantage", home, away))

        w = weight(Factor.EXPECTED_GOALS)
        if w > 0 and context.can_use(Factor.EXPECTED_GOALS):
            home, away = self._attack_defense(context, home, away, w)
            trace.append(("expected_goals", home, away))

        w = weight(Factor.ODDS)
        if w > 0 and context.can_use(Factor.ODDS):
            view = market_view(context.odds)
            if view.favourite == "home":
                home *= 1 + (view.home - p.market_home_anchor) * w
            elif view.favourite == "away":
                away *= 1 + (view.away - p.market_away_anchor) * w
            trace.append(("odds", home, away))

        w = weight(Factor.SQUAD_STRENGTH)
        if w > 0 and context.can_use(Factor.SQUAD_STRENGTH):
            home_mod, away_mod = self._squad_modifiers(context)
            home *= 1 - (1 - home_mod) * w
            away *= 1 - (1 - away_mod) * w
            trace.append(("squad_strength", home, away))

        w = weight(Factor.ELO)
        if w > 0 and context.can_use(Factor.ELO):
            diff = context.home_elo.rating - context.away_elo.rating
            normalized = float(np.clip(diff / p.elo_scale, -1.0, 1.0))
            home *= 1 + normalized * w
            away *= 1 - normalized * w
            trace.append(("elo", home, away))

        matchday = context.match.matchday
        if p.high_stakes_boost and matchday is not None and matchday >= p.late_season_matchday:
            mean = (home + away) / 2
            home = home * (1 - p.late_season_regression) + mean * p.late_season_regression
            away = away * (1 - p.late_season_regression) + mean * p.late_season_regression
            trace.append(("late_season", home, away))

        home = max(p.min_expected_goals, home)
        away = max(p.min_expected_goals, away)
        return home, away, tuple(trace)

    def _form(
        self,
        context: PredictionContext,
        home: float,
        away: float,
        w: float,
    ) -> tuple[float, float]:
        p = self.params
        home_form, away_form = context.home_form, context.away_form
        home *= 1 + (home_form.form_score / 50.0 - 1) * w
        away *= 1 + (away_form.form_score / 50.0 - 1) * w

        trend = p.goal_trend_weight
        if trend > 0:
            if home_form.matches_played > 0:
                home = home * (1 - trend) + home_form.goals_per_match * trend
            if away_form.matches_played > 0:
                away = away * (1 - trend) + away_form.goals_per_match * trend

        if p.streak_weight > 0:
            home *= max(0.0, 1 + home_form.current_streak * p.streak_step * p.streak_weight)
            away *= max(0.0, 1 + away_form.current_streak * p.streak_step * p.streak_weight)
        return home, away

    def _attack_defense(
        self,
        context: PredictionContext,
        home: float,
        away: float,
        w: float,
    ) -> tuple[float, float]:
        home_xg, away_xg = context.home_xg, context.away_xg
        if home_xg.matches_played > 0:
            home = home * (1 - w) + home_xg.xg_per_match * w
        if away_xg.matches_played > 0:
            away = away * (1 - w) + away_xg.xg_per_match * w
        # A leaky opponent (high xGA) lifts expected goals
        avg = self.params.league_avg_xga
        if away_xg.matches_played > 0:
            home *= max(0.0, 1 + (away_xg.xga_per_match - avg) * w)
        if home_xg.matches_played > 0:
            away *= max(0.0, 1 + (home_xg.xga_per_match - avg) * w)
        return home, away

    def _squad_modifiers(self, context: PredictionContext) -> tuple[float, float]:
        floor = self.params.squad_strength_floor
        lineup = context.lineup
        home = squad_strength_modifier(
            injuries=context.home_injuries,
            suspensions=context.home_suspensions,
            lineup=lineup.home if lineup is not None and lineup.home.starting_xi else None,
            usual_starters=context.match.home.usual_starters,
            floor=floor,
        )
        away = squad_strength_modifier(
            injuries=context.away_injuries,
            suspensions=context.away_suspensions,
            lineup=lineup.away if lineup is not None and lineup.away.starting_xi else None,
            usual_starters=context.match.away.usual_starters,
            floor=floor,
        )
        return home, away

    def predict(
        self,
        context: PredictionContext,
        weights: EffectiveWeights,
        rng: Optional[np.random.Generator] = None,
    ) -> GoalsEstimate:
        """Adjust, jitter (when variance > 0), clamp and round."""
        p = self.params
        home, away, trace = self.adjust(context, weights)

        if p.random_variance > 0:
            generator = rng or self.rng or np.random.default_rng()
            home += (generator.random() - 0.5) * 2 * p.random_variance * home
            away += (generator.random() - 0.5) * 2 * p.random_variance * away

        home = float(np.clip(home, 0.0, p.max_home_goals))
        away = float(np.clip(away, 0.0, p.max_away_goals))
        estimate = GoalsEstimate(
            expected_home_goals=home,
            expected_away_goals=away,
            predicted_home_score=max(p.min_goals, min(p.max_home_goals, round_goals(home, p.rounding))),
            predicted_away_score=max(p.min_goals, min(p.max_away_goals, round_goals(away, p.rounding))),
            trace=trace,
        )
        logger.debug(
            f"[MODEL] match={context.match.match_id} xG={home:.2f}-{away:.2f} "
            f"-> {estimate.predicted_home_score}-{estimate.predicted_away_score}"
        )
        return estimate
