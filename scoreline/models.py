"""Domain types shared by acquisition and prediction.

Feeds, factors and providers are closed enumerations. Payload classes are the
normalized shapes every fetcher must return; provider-specific parsing stays
inside scoreline.etl.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class SourceType(str, Enum):
    """One external feed. Several feeds may share a provider."""

    FORM = "form"
    EXPECTED_GOALS = "expected_goals"
    ELO = "elo"
    ODDS = "odds"
    INJURIES = "injuries"
    SUSPENSIONS = "suspensions"
    LINEUPS = "lineups"


class Factor(str, Enum):
    """Named predictive factor with a configured weight."""

    FORM = "form"
    HOME_ADVANTAGE = "home_advantage"
    EXPECTED_GOALS = "expected_goals"
    ODDS = "odds"
    SQUAD_STRENGTH = "squad_strength"
    ELO = "elo"


class Tier(str, Enum):
    """Quota priority of a feed within its provider."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class Provider(str, Enum):
    API_FOOTBALL = "api_football"
    UNDERSTAT = "understat"
    CLUBELO = "clubelo"
    FOOTBALL_DATA = "football_data"
    FOOTBALL_DATA_UK = "football_data_uk"


# Owning provider and quota tier per feed
SOURCE_PROVIDERS: dict[SourceType, Provider] = {
    SourceType.FORM: Provider.FOOTBALL_DATA,
    SourceType.EXPECTED_GOALS: Provider.UNDERSTAT,
    SourceType.ELO: Provider.CLUBELO,
    SourceType.ODDS: Provider.FOOTBALL_DATA_UK,
    SourceType.INJURIES: Provider.API_FOOTBALL,
    SourceType.SUSPENSIONS: Provider.API_FOOTBALL,
    SourceType.LINEUPS: Provider.API_FOOTBALL,
}

SOURCE_TIERS: dict[SourceType, Tier] = {
    SourceType.FORM: Tier.PRIMARY,
    SourceType.EXPECTED_GOALS: Tier.PRIMARY,
    SourceType.ELO: Tier.PRIMARY,
    SourceType.ODDS: Tier.PRIMARY,
    SourceType.LINEUPS: Tier.PRIMARY,
    SourceType.INJURIES: Tier.SECONDARY,
    SourceType.SUSPENSIONS: Tier.SECONDARY,
}

# Feeds keyed by team; the rest are keyed by match
TEAM_KEYED_SOURCES = frozenset({
    SourceType.FORM,
    SourceType.EXPECTED_GOALS,
    SourceType.ELO,
    SourceType.INJURIES,
    SourceType.SUSPENSIONS,
})


def team_key(team_id: int) -> str:
    return f"team:{team_id}"


def match_key(match_id: int) -> str:
    return f"match:{match_id}"


def sources_for_provider(provider: Provider) -> list[SourceType]:
    return [s for s, p in SOURCE_PROVIDERS.items() if p == provider]


# =============================================================================
# REFERENCE DATA
# =============================================================================


@dataclass(frozen=True)
class TeamRef:
    """A team as known to the persistence layer.

    external_ids maps provider value -> the provider's identifier for the team
    (numeric id for API-Football, club slug for ClubElo, display name for
    Understat and football-data.co.uk).
    """

    team_id: int
    name: str
    external_ids: dict = field(default_factory=dict, compare=False, hash=False)
    usual_starters: tuple[str, ...] = ()

    def external_id(self, provider: Provider) -> Optional[str]:
        value = self.external_ids.get(provider.value)
        return str(value) if value is not None else None


@dataclass(frozen=True)
class MatchRef:
    """An upcoming match with its kickoff time (UTC)."""

    match_id: int
    kickoff_utc: datetime
    home: TeamRef
    away: TeamRef
    competition: str = ""
    season: Optional[int] = None
    # Round number within the competition, when known
    matchday: Optional[int] = None
    external_ids: dict = field(default_factory=dict, compare=False, hash=False)

    def external_id(self, provider: Provider) -> Optional[str]:
        value = self.external_ids.get(provider.value)
        return str(value) if value is not None else None


# =============================================================================
# NORMALIZED PAYLOADS
# =============================================================================


@dataclass(frozen=True)
class TeamForm:
    """Recent results summary for one team."""

    matches_played: int
    wins: int
    draws: int
    losses: int
    goals_scored: int
    goals_conceded: int
    form_string: str = ""  # most recent first, e.g. "WWDLW"
    current_streak: int = 0  # +N winning run, -N losing run
    calculated_at: Optional[datetime] = None

    @property
    def points_per_match(self) -> float:
        if self.matches_played <= 0:
            return 0.0
        return (self.wins * 3 + self.draws) / self.matches_played

    @property
    def form_score(self) -> float:
        """0-100 scale where 50 is an average side."""
        if self.matches_played <= 0:
            return 50.0
        return self.points_per_match / 3.0 * 100.0

    @property
    def goals_per_match(self) -> float:
        return self.goals_scored / self.matches_played if self.matches_played else 0.0

    @property
    def conceded_per_match(self) -> float:
        return self.goals_conceded / self.matches_played if self.matches_played else 0.0


@dataclass(frozen=True)
class TeamXg:
    """Expected goals for and against over a recent window."""

    matches_played: int
    xg_for: float
    xg_against: float
    season: Optional[int] = None

    @property
    def xg_per_match(self) -> float:
        return self.xg_for / self.matches_played if self.matches_played else 0.0

    @property
    def xga_per_match(self) -> float:
        return self.xg_against / self.matches_played if self.matches_played else 0.0


@dataclass(frozen=True)
class EloRating:
    rating: float
    rank: Optional[int] = None
    rated_on: Optional[datetime] = None


@dataclass(frozen=True)
class MatchOdds:
    """Decimal 1X2 prices for one match."""

    home_win: float
    draw: float
    away_win: float
    bookmaker: Optional[str] = None


class InjurySeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"


@dataclass(frozen=True)
class InjuredPlayer:
    name: str
    position: Optional[str] = None
    injury_type: Optional[str] = None
    severity: InjurySeverity = InjurySeverity.MINOR
    is_doubtful: bool = False
    is_key_player: bool = False
    is_top_scorer: bool = False
    is_captain: bool = False


@dataclass(frozen=True)
class InjuryReport:
    players: tuple[InjuredPlayer, ...] = ()


@dataclass(frozen=True)
class SuspendedPlayer:
    name: str
    reason: Optional[str] = None
    is_key_player: bool = False


@dataclass(frozen=True)
class SuspensionReport:
    players: tuple[SuspendedPlayer, ...] = ()


@dataclass(frozen=True)
class LineupPlayer:
    name: str
    player_id: Optional[int] = None
    number: Optional[int] = None
    position: Optional[str] = None


@dataclass(frozen=True)
class TeamLineup:
    """Confirmed line-up for one side; players are an owned value list."""

    formation: Optional[str] = None
    coach: Optional[str] = None
    captain: Optional[str] = None
    starting_xi: tuple[LineupPlayer, ...] = ()
    bench: tuple[LineupPlayer, ...] = ()

    def to_dict(self) -> dict:
        return {
            "formation": self.formation,
            "coach": self.coach,
            "captain": self.captain,
            "starting_xi": [_player_to_dict(p) for p in self.starting_xi],
            "bench": [_player_to_dict(p) for p in self.bench],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TeamLineup":
        return cls(
            formation=data.get("formation"),
            coach=data.get("coach"),
            captain=data.get("captain"),
            starting_xi=tuple(_player_from_dict(p) for p in data.get("starting_xi") or []),
            bench=tuple(_player_from_dict(p) for p in data.get("bench") or []),
        )


@dataclass(frozen=True)
class MatchLineup:
    home: TeamLineup
    away: TeamLineup

    def to_dict(self) -> dict:
        return {"home": self.home.to_dict(), "away": self.away.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "MatchLineup":
        return cls(
            home=TeamLineup.from_dict(data.get("home") or {}),
            away=TeamLineup.from_dict(data.get("away") or {}),
        )


def _player_to_dict(player: LineupPlayer) -> dict:
    return {
        "name": player.name,
        "id": player.player_id,
        "number": player.number,
        "position": player.position,
    }


def _player_from_dict(data: dict) -> LineupPlayer:
    return LineupPlayer(
        name=data.get("name") or "",
        player_id=data.get("id"),
        number=data.get("number"),
        position=data.get("position"),
    )


Payload = Union[
    TeamForm, TeamXg, EloRating, MatchOdds, InjuryReport, SuspensionReport, MatchLineup
]

# Payload class each feed must produce
SOURCE_PAYLOADS: dict[SourceType, type] = {
    SourceType.FORM: TeamForm,
    SourceType.EXPECTED_GOALS: TeamXg,
    SourceType.ELO: EloRating,
    SourceType.ODDS: MatchOdds,
    SourceType.INJURIES: InjuryReport,
    SourceType.SUSPENSIONS: SuspensionReport,
    SourceType.LINEUPS: MatchLineup,
}
