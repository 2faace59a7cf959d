"""Squad-strength features: injury/suspension impact and line-up absences.

Impact scores are 0-100 (higher = weaker side). The squad-strength modifier
maps impact onto [floor, 1.0], 1.0 meaning a full-strength side.
"""

import re
from typing import Optional, Sequence

from scoreline.models import (
    InjuredPlayer,
    InjuryReport,
    InjurySeverity,
    SuspensionReport,
    TeamLineup,
)

_SEVERE_MARKERS = ("acl", "fracture", "rupture")
_MODERATE_MARKERS = ("strain", "sprain", "hamstring")
# Whole words only: "injured" must not match "red"
_CARD_PATTERN = re.compile(r"\b(card|cards|red|yellow|yellows)\b", re.IGNORECASE)
_SUSPENSION_PATTERN = re.compile(
    r"\b(suspension|suspended|disciplinary|card|cards|red|yellow|yellows)\b", re.IGNORECASE
)


def map_severity(description: Optional[str]) -> InjurySeverity:
    text = (description or "").lower()
    if any(marker in text for marker in _SEVERE_MARKERS):
        return InjurySeverity.SEVERE
    if any(marker in text for marker in _MODERATE_MARKERS):
        return InjurySeverity.MODERATE
    return InjurySeverity.MINOR


def is_suspension_reason(reason: Optional[str]) -> bool:
    return bool(_SUSPENSION_PATTERN.search(reason or ""))


def is_card_suspension(reason: Optional[str]) -> bool:
    return bool(_CARD_PATTERN.search(reason or ""))


def _is_first_choice_keeper(player: InjuredPlayer) -> bool:
    return (player.position or "").upper() == "GK" and not player.is_doubtful


def injury_impact_score(report: InjuryReport) -> float:
    """Weighted count of absences, capped at 100."""
    players = report.players
    impact = 0.0
    impact += len(players) * 5
    impact += sum(1 for p in players if p.is_key_player) * 15
    impact += sum(1 for p in players if p.severity == InjurySeverity.SEVERE) * 8
    impact += sum(1 for p in players if p.is_doubtful) * 2
    if any(p.is_top_scorer for p in players):
        impact += 20
    if any(p.is_captain for p in players):
        impact += 10
    if any(_is_first_choice_keeper(p) for p in players):
        impact += 15
    return min(100.0, impact)


def suspension_impact_score(report: SuspensionReport) -> float:
    players = report.players
    impact = 0.0
    impact += len(players) * 6
    impact += sum(1 for p in players if p.is_key_player) * 18
    cards = sum(1 for p in players if is_card_suspension(p.reason))
    impact += cards * 5
    impact += (len(players) - cards) * 8
    return min(100.0, impact)


def lineup_absence_impact(lineup: TeamLineup, usual_starters: Sequence[str]) -> Optional[float]:
    """Share of usual starters missing from the confirmed XI, as 0-100.

    None when there is nothing to compare against.
    """
    if not usual_starters or not lineup.starting_xi:
        return None
    starting = {_normalize(p.name) for p in lineup.starting_xi}
    usual = {_normalize(name) for name in usual_starters}
    missing = len(usual - starting)
    return 100.0 * missing / len(usual)


def _normalize(name: str) -> str:
    return " ".join(name.lower().split())


def squad_strength_modifier(
    injuries: Optional[InjuryReport] = None,
    suspensions: Optional[SuspensionReport] = None,
    lineup: Optional[TeamLineup] = None,
    usual_starters: Sequence[str] = (),
    floor: float = 0.5,
) -> float:
    """
    Single multiplicative modifier in [floor, 1.0] for one side.

    A confirmed line-up compared against the usual starters supersedes
    injury and suspension reports; otherwise the two reports are summed.
    """
    impact: Optional[float] = None
    if lineup is not None:
        impact = lineup_absence_impact(lineup, usual_starters)
    if impact is None:
        impact = 0.0
        if injuries is not None:
            impact += injury_impact_score(injuries)
        if suspensions is not None:
            impact += suspension_impact_score(suspensions)
    impact = max(0.0, min(100.0, impact))
    return 1.0 - (1.0 - floor) * impact / 100.0
