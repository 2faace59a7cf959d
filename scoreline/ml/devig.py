"""
De-vig: turn bookmaker 1X2 prices into outcome probabilities.

- devig_proportional: normalize 1/odds to sum to 1 (default)
- devig_power: find k with sum((1/o)^k) = 1 (bisection)

market_view() combines de-vig with the favourite pick used by the market
nudge in the expected-goals model.
"""

from dataclasses import dataclass
from typing import Callable, Tuple

import numpy as np

from scoreline.models import MatchOdds

UNIFORM = (1 / 3, 1 / 3, 1 / 3)

Probabilities = Tuple[float, float, float]


def _implied(odds_home: float, odds_draw: float, odds_away: float) -> "np.ndarray | None":
    prices = np.array([odds_home, odds_draw, odds_away], dtype=float)
    if not np.all(np.isfinite(prices)) or np.any(prices <= 1.0):
        return None
    return 1.0 / prices


def devig_proportional(odds_home: float, odds_draw: float, odds_away: float) -> Probabilities:
    """Proportional de-vig. Invalid prices (<= 1.0) give a uniform distribution."""
    implied = _implied(odds_home, odds_draw, odds_away)
    if implied is None:
        return UNIFORM
    probs = implied / implied.sum()
    return float(probs[0]), float(probs[1]), float(probs[2])


def devig_power(odds_home: float, odds_draw: float, odds_away: float) -> Probabilities:
    """
    Power (multiplicative) de-vig.

    Solves sum(p_i^k) = 1 for k by bisection on [0.1, 3.0]; 60 iterations is
    well below float resolution.
    """
    implied = _implied(odds_home, odds_draw, odds_away)
    if implied is None:
        return UNIFORM
    if abs(implied.sum() - 1.0) < 1e-3:
        probs = implied / implied.sum()
        return float(probs[0]), float(probs[1]), float(probs[2])

    k_low, k_high = 0.1, 3.0
    for _ in range(60):
        k_mid = (k_low + k_high) / 2
        if np.power(implied, k_mid).sum() > 1.0:
            k_low = k_mid
        else:
            k_high = k_mid

    probs = np.power(implied, (k_low + k_high) / 2)
    probs = probs / probs.sum()
    return float(probs[0]), float(probs[1]), float(probs[2])


def get_devig_function(method: str = "proportional") -> Callable[[float, float, float], Probabilities]:
    if method == "power":
        return devig_power
    return devig_proportional


@dataclass(frozen=True)
class MarketView:
    home: float
    draw: float
    away: float

    @property
    def favourite(self) -> str:
        """Favourite outcome: home, draw or away (ties resolve in that order)."""
        best = max(self.home, self.draw, self.away)
        if self.home == best:
            return "home"
        if self.draw == best:
            return "draw"
        return "away"

    @property
    def confidence(self) -> float:
        """Probability of the favourite outcome."""
        return max(self.home, self.draw, self.away)


def market_view(odds: MatchOdds, method: str = "proportional") -> MarketView:
    home, draw, away = get_devig_function(method)(odds.home_win, odds.draw, odds.away_win)
    return MarketView(home=home, draw=draw, away=away)
