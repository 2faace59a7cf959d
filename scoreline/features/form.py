"""Team form from recent finished matches."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from scoreline.models import TeamForm


@dataclass(frozen=True)
class FinishedMatch:
    played_at: datetime
    home_team_id: int
    away_team_id: int
    home_goals: int
    away_goals: int


def calculate_team_form(
    team_id: int,
    matches: Iterable[FinishedMatch],
    window: int = 5,
    calculated_at: Optional[datetime] = None,
) -> TeamForm:
    """
    Summarize the team's last `window` finished matches.

    Matches not involving team_id are ignored. The form string and streak read
    most recent first; a draw ends any streak.

    Args:
        team_id: Team to summarize (same id space as the matches).
        matches: Finished matches in any order.
        window: Number of most recent matches to use.
        calculated_at: Timestamp stored on the result.

    Returns:
        TeamForm (matches_played=0 when the team has no results).
    """
    relevant = [
        m for m in matches
        if team_id in (m.home_team_id, m.away_team_id)
    ]
    relevant.sort(key=lambda m: m.played_at, reverse=True)
    recent = relevant[:window]

    wins = draws = losses = scored = conceded = 0
    letters = []
    for match in recent:
        is_home = match.home_team_id == team_id
        goals_for = match.home_goals if is_home else match.away_goals
        goals_against = match.away_goals if is_home else match.home_goals
        scored += goals_for
        conceded += goals_against
        if goals_for > goals_against:
            wins += 1
            letters.append("W")
        elif goals_for < goals_against:
            losses += 1
            letters.append("L")
        else:
            draws += 1
            letters.append("D")

    return TeamForm(
        matches_played=len(recent),
        wins=wins,
        draws=draws,
        losses=losses,
        goals_scored=scored,
        goals_conceded=conceded,
        form_string="".join(letters),
        current_streak=_streak(letters),
        calculated_at=calculated_at,
    )


def _streak(letters: list[str]) -> int:
    if not letters or letters[0] == "D":
        return 0
    first = letters[0]
    length = 0
    for letter in letters:
        if letter != first:
            break
        length += 1
    return length if first == "W" else -length
