"""
Tests for feature helpers: team form and squad strength.

Verifies:
1. Form summary over the most recent window, streak and form string
2. Injury severity mapping and suspension reason detection
3. Impact scores and the squad-strength modifier range
"""

from datetime import datetime, timedelta, timezone

import pytest

from scoreline.features.form import FinishedMatch, calculate_team_form
from scoreline.features.squad import (
    injury_impact_score,
    is_card_suspension,
    is_suspension_reason,
    lineup_absence_impact,
    map_severity,
    squad_strength_modifier,
    suspension_impact_score,
)
from scoreline.models import (
    InjuredPlayer,
    InjuryReport,
    InjurySeverity,
    LineupPlayer,
    SuspendedPlayer,
    SuspensionReport,
    TeamLineup,
)

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _results(team_id: int, scores: list[tuple[int, int]]) -> list[FinishedMatch]:
    """Oldest first; team plays at home in even rounds, away in odd."""
    matches = []
    for i, (goals_for, goals_against) in enumerate(scores):
        home = i % 2 == 0
        matches.append(FinishedMatch(
            played_at=START + timedelta(days=7 * i),
            home_team_id=team_id if home else 99,
            away_team_id=99 if home else team_id,
            home_goals=goals_for if home else goals_against,
            away_goals=goals_against if home else goals_for,
        ))
    return matches


class TestTeamForm:
    """Test calculate_team_form."""

    def test_window_uses_most_recent(self):
        # oldest -> newest: L L W W D W W
        scores = [(0, 1), (0, 2), (2, 0), (1, 0), (1, 1), (3, 1), (2, 0)]
        result = calculate_team_form(5, _results(5, scores), window=5)
        assert result.matches_played == 5
        assert (result.wins, result.draws, result.losses) == (4, 1, 0)
        assert result.form_string == "WWDWW"
        assert result.current_streak == 2
        assert result.goals_scored == 9
        assert result.goals_conceded == 2
        assert result.points_per_match == pytest.approx(13 / 5)

    def test_losing_streak_negative(self):
        scores = [(2, 0), (0, 1), (1, 3)]
        result = calculate_team_form(5, _results(5, scores))
        assert result.current_streak == -2

    def test_draw_ends_streak(self):
        result = calculate_team_form(5, _results(5, [(1, 0), (2, 2)]))
        assert result.current_streak == 0

    def test_other_teams_ignored(self):
        unrelated = FinishedMatch(START, 1, 2, 5, 0)
        result = calculate_team_form(5, [unrelated])
        assert result.matches_played == 0
        assert result.form_score == 50.0


class TestSeverityAndReasons:
    """Test text classification of absences."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("ACL Injury", InjurySeverity.SEVERE),
            ("Ankle Fracture", InjurySeverity.SEVERE),
            ("Hamstring", InjurySeverity.MODERATE),
            ("Knock", InjurySeverity.MINOR),
            (None, InjurySeverity.MINOR),
        ],
    )
    def test_map_severity(self, text, expected):
        assert map_severity(text) == expected

    def test_suspension_reasons(self):
        assert is_suspension_reason("Red Card")
        assert is_suspension_reason("Suspended")
        assert is_suspension_reason("Yellow Cards")
        assert not is_suspension_reason("Injured")
        assert not is_suspension_reason("Hamstring")

    def test_card_vs_other_suspension(self):
        assert is_card_suspension("Red Card")
        assert not is_card_suspension("Suspended")


class TestImpact:
    """Test impact scores and the squad-strength modifier."""

    def test_injury_impact_weights(self):
        report = InjuryReport(players=(
            InjuredPlayer(name="A", is_key_player=True, severity=InjurySeverity.SEVERE),
            InjuredPlayer(name="B", is_doubtful=True),
        ))
        # 2*5 + 15 + 8 + 2
        assert injury_impact_score(report) == 35.0

    def test_first_choice_keeper(self):
        report = InjuryReport(players=(InjuredPlayer(name="GK1", position="GK"),))
        assert injury_impact_score(report) == 20.0

    def test_injury_impact_capped(self):
        players = tuple(
            InjuredPlayer(name=str(i), is_key_player=True, severity=InjurySeverity.SEVERE)
            for i in range(10)
        )
        assert injury_impact_score(InjuryReport(players=players)) == 100.0

    def test_suspension_impact(self):
        report = SuspensionReport(players=(
            SuspendedPlayer(name="A", reason="Red Card", is_key_player=True),
            SuspendedPlayer(name="B", reason="Suspended"),
        ))
        # 2*6 + 18 + 5 (card) + 8 (other)
        assert suspension_impact_score(report) == 43.0

    def test_lineup_absence(self):
        lineup = TeamLineup(starting_xi=tuple(LineupPlayer(name=n) for n in ["A", "B", "X", "Y"]))
        assert lineup_absence_impact(lineup, ["A", "B", "C", "D"]) == 50.0
        assert lineup_absence_impact(lineup, []) is None

    def test_modifier_range(self):
        assert squad_strength_modifier() == 1.0
        worst = InjuryReport(players=tuple(
            InjuredPlayer(name=str(i), is_key_player=True) for i in range(10)
        ))
        assert squad_strength_modifier(injuries=worst) == pytest.approx(0.5)

    def test_lineup_supersedes_reports(self):
        full_xi = TeamLineup(starting_xi=tuple(LineupPlayer(name=n) for n in "ABCDEFGHIJK"))
        heavy = InjuryReport(players=tuple(InjuredPlayer(name=str(i)) for i in range(8)))
        modifier = squad_strength_modifier(
            injuries=heavy, lineup=full_xi, usual_starters=list("ABCDEFGHIJK")
        )
        assert modifier == 1.0
