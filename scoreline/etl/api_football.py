"""API-Football fetchers: injuries, suspensions and line-ups.

All three feeds share one daily plan, so retries are off by default: a failed
call is retried by the next scheduler cycle instead of burning extra quota.

Endpoints:
- GET /injuries?fixture={id}&team={id}   (or team + season + date)
- GET /fixtures/lineups?fixture={id}

The injuries endpoint lists suspended players too (reason "Red Card",
"Suspended", ...); the injuries feed drops them and the suspensions feed keeps
only them.
"""

import logging
from typing import Optional

import httpx

from scoreline.etl.base import FetchRequest, MalformedPayload, ProviderUnavailable
from scoreline.etl.http import HttpFeedFetcher
from scoreline.features.squad import is_suspension_reason, map_severity
from scoreline.models import (
    InjuredPlayer,
    InjuryReport,
    LineupPlayer,
    MatchLineup,
    Provider,
    SourceType,
    SuspendedPlayer,
    SuspensionReport,
    TeamLineup,
    TeamRef,
)

logger = logging.getLogger(__name__)

_POSITIONS = {"G": "GK", "D": "DEF", "M": "MID", "F": "FWD"}


def _response_list(data: object, endpoint: str) -> list:
    if not isinstance(data, dict):
        raise MalformedPayload(f"{endpoint}: expected JSON object")
    errors = data.get("errors")
    if errors:
        # API-Football reports auth/plan errors with HTTP 200
        raise ProviderUnavailable(f"{endpoint}: API error {errors}")
    response = data.get("response")
    if not isinstance(response, list):
        raise MalformedPayload(f"{endpoint}: 'response' is not a list")
    return response


class _ApiFootballFetcher(HttpFeedFetcher):
    def __init__(
        self,
        api_key: str,
        host: str = "v3.football.api-sports.io",
        client: Optional[httpx.AsyncClient] = None,
        requests_per_minute: int = 10,
        max_retries: int = 0,
        **kwargs,
    ):
        self.api_key = api_key
        self.host = host
        if "api-sports.io" in host:
            self.BASE_URL = f"https://{host}"
        else:
            # RapidAPI
            self.BASE_URL = f"https://{host}/v3"
        super().__init__(
            client=client,
            requests_per_minute=requests_per_minute,
            max_retries=max_retries,
            **kwargs,
        )

    def _headers(self) -> dict:
        headers = super()._headers()
        if "api-sports.io" in self.host:
            headers["x-apisports-key"] = self.api_key
        else:
            headers["X-RapidAPI-Key"] = self.api_key
            headers["X-RapidAPI-Host"] = self.host
        return headers

    async def _team_absences(self, request: FetchRequest) -> Optional[list]:
        """Raw /injuries entries for the request's team, or None when unmapped."""
        team = request.team
        team_id = team.external_id(Provider.API_FOOTBALL) if team else None
        if team_id is None:
            logger.warning(f"[api_football] no team id mapping for {request.key}, skipping")
            return None

        fixture_id = request.match.external_id(Provider.API_FOOTBALL)
        if fixture_id is not None:
            params = {"fixture": fixture_id, "team": team_id}
        else:
            params = {
                "team": team_id,
                "season": request.match.season,
                "date": request.match.kickoff_utc.date().isoformat(),
            }
        data = await self._get_json("/injuries", params)
        return _response_list(data, "injuries")


def _player_fields(entry: dict) -> dict:
    player = entry.get("player")
    if not isinstance(player, dict) or not player.get("name"):
        raise MalformedPayload("injuries: entry without player name")
    return player


class ApiFootballInjuriesFetcher(_ApiFootballFetcher):
    source_type = SourceType.INJURIES

    async def fetch(self, request: FetchRequest) -> Optional[InjuryReport]:
        entries = await self._team_absences(request)
        if entries is None:
            return None
        return parse_injuries(entries, request.team)


class ApiFootballSuspensionsFetcher(_ApiFootballFetcher):
    source_type = SourceType.SUSPENSIONS

    async def fetch(self, request: FetchRequest) -> Optional[SuspensionReport]:
        entries = await self._team_absences(request)
        if entries is None:
            return None
        return parse_suspensions(entries, request.team)


class ApiFootballLineupsFetcher(_ApiFootballFetcher):
    source_type = SourceType.LINEUPS

    async def fetch(self, request: FetchRequest) -> Optional[MatchLineup]:
        fixture_id = request.match.external_id(Provider.API_FOOTBALL)
        if fixture_id is None:
            logger.warning(f"[api_football] no fixture id mapping for {request.key}, skipping")
            return None
        data = await self._get_json("/fixtures/lineups", {"fixture": fixture_id})
        entries = _response_list(data, "fixtures/lineups")
        if not entries:
            # Not announced yet
            return None
        return parse_lineups(entries, request.match.home, request.match.away)


def parse_injuries(entries: list, team: Optional[TeamRef]) -> InjuryReport:
    usual = {name.lower() for name in (team.usual_starters if team else ())}
    players = []
    for entry in entries:
        player = _player_fields(entry)
        reason = player.get("reason")
        if is_suspension_reason(reason):
            continue
        name = player["name"]
        players.append(InjuredPlayer(
            name=name,
            injury_type=reason,
            severity=map_severity(reason),
            is_doubtful=(player.get("type") or "").lower() == "questionable",
            is_key_player=name.lower() in usual,
        ))
    return InjuryReport(players=tuple(players))


def parse_suspensions(entries: list, team: Optional[TeamRef]) -> SuspensionReport:
    usual = {name.lower() for name in (team.usual_starters if team else ())}
    players = []
    for entry in entries:
        player = _player_fields(entry)
        reason = player.get("reason")
        if not is_suspension_reason(reason):
            continue
        players.append(SuspendedPlayer(
            name=player["name"],
            reason=reason,
            is_key_player=player["name"].lower() in usual,
        ))
    return SuspensionReport(players=tuple(players))


def _parse_player_list(items: object) -> tuple[LineupPlayer, ...]:
    if not isinstance(items, list):
        raise MalformedPayload("fixtures/lineups: player list is not a list")
    players = []
    for item in items:
        player = item.get("player") if isinstance(item, dict) else None
        if not isinstance(player, dict) or not player.get("name"):
            raise MalformedPayload("fixtures/lineups: player entry without name")
        players.append(LineupPlayer(
            name=player["name"],
            player_id=player.get("id"),
            number=player.get("number"),
            position=_POSITIONS.get(player.get("pos") or "", player.get("pos")),
        ))
    return tuple(players)


def _parse_team_lineup(entry: dict) -> TeamLineup:
    coach = entry.get("coach") or {}
    return TeamLineup(
        formation=entry.get("formation"),
        coach=coach.get("name") if isinstance(coach, dict) else None,
        starting_xi=_parse_player_list(entry.get("startXI") or []),
        bench=_parse_player_list(entry.get("substitutes") or []),
    )


def parse_lineups(entries: list, home: TeamRef, away: TeamRef) -> MatchLineup:
    """Match entries to sides by team id; fall back to response order (home first)."""
    if len(entries) != 2:
        raise MalformedPayload(f"fixtures/lineups: expected 2 teams, got {len(entries)}")

    by_team = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise MalformedPayload("fixtures/lineups: entry is not an object")
        team_id = (entry.get("team") or {}).get("id")
        if team_id is not None:
            by_team[str(team_id)] = entry

    home_entry = by_team.get(home.external_id(Provider.API_FOOTBALL) or "", entries[0])
    away_entry = by_team.get(away.external_id(Provider.API_FOOTBALL) or "", entries[1])
    return MatchLineup(home=_parse_team_lineup(home_entry), away=_parse_team_lineup(away_entry))
