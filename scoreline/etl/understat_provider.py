"""
Understat fetcher for team xG / xGA.

Uses Understat's internal AJAX endpoint:
    GET /getLeagueData/{league}/{season} -> {"teams": {id: {"title", "history": [...]}}, ...}

Each history entry carries per-match "xG" and "xGA". The team's last
`window` matches are summed into a TeamXg payload.

Required headers (otherwise Understat answers 404):
- X-Requested-With: XMLHttpRequest
- Referer: https://understat.com/league/{league}/{season}

One league document serves every team in it, so it is memoized for a few
minutes to avoid refetching it for each team in the same run.
"""

import logging
import time
from typing import Optional

import httpx

from scoreline.etl.base import FetchRequest, MalformedPayload
from scoreline.etl.http import HttpFeedFetcher
from scoreline.models import Provider, SourceType, TeamXg

logger = logging.getLogger(__name__)

UNDERSTAT_BASE_URL = "https://understat.com"
LEAGUE_MEMO_SECONDS = 600.0


class UnderstatXgFetcher(HttpFeedFetcher):
    BASE_URL = UNDERSTAT_BASE_URL
    source_type = SourceType.EXPECTED_GOALS

    def __init__(self, window: int = 10, client: Optional[httpx.AsyncClient] = None, **kwargs):
        super().__init__(client=client, **kwargs)
        self.window = window
        self._league_memo: dict[tuple[str, int], tuple[float, dict]] = {}
        self._referer = UNDERSTAT_BASE_URL

    def _headers(self) -> dict:
        headers = super()._headers()
        headers["X-Requested-With"] = "XMLHttpRequest"
        headers["Referer"] = self._referer
        return headers

    async def _league_teams(self, league: str, season: int) -> dict:
        memo_key = (league, season)
        cached = self._league_memo.get(memo_key)
        if cached and time.monotonic() - cached[0] < LEAGUE_MEMO_SECONDS:
            return cached[1]

        self._referer = f"{UNDERSTAT_BASE_URL}/league/{league}/{season}"
        data = await self._get_json(f"/getLeagueData/{league}/{season}")
        teams = data.get("teams") if isinstance(data, dict) else None
        if not isinstance(teams, dict):
            raise MalformedPayload(f"getLeagueData/{league}/{season}: missing 'teams'")
        self._league_memo[memo_key] = (time.monotonic(), teams)
        return teams

    async def fetch(self, request: FetchRequest) -> Optional[TeamXg]:
        match, team = request.match, request.team
        league = match.external_ids.get("understat_league")
        if team is None or not league or match.season is None:
            logger.warning(f"[understat] no league/season mapping for {request.key}, skipping")
            return None

        teams = await self._league_teams(league, int(match.season))
        title = team.external_id(Provider.UNDERSTAT) or team.name
        return parse_team_xg(teams, title, self.window, season=int(match.season))


def parse_team_xg(teams: dict, title: str, window: int, season: Optional[int] = None) -> Optional[TeamXg]:
    """Sum xG/xGA over the team's last `window` matches. None if the team is absent."""
    wanted = title.strip().lower()
    entry = next(
        (t for t in teams.values() if isinstance(t, dict) and str(t.get("title", "")).strip().lower() == wanted),
        None,
    )
    if entry is None:
        logger.warning(f"[understat] team '{title}' not found in league data")
        return None

    history = entry.get("history")
    if not isinstance(history, list):
        raise MalformedPayload(f"understat: history for '{title}' is not a list")

    recent = history[-window:] if window > 0 else history
    try:
        xg_for = sum(float(m["xG"]) for m in recent)
        xg_against = sum(float(m["xGA"]) for m in recent)
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedPayload(f"understat: bad xG entry for '{title}': {e}") from e

    return TeamXg(
        matches_played=len(recent),
        xg_for=round(xg_for, 4),
        xg_against=round(xg_against, 4),
        season=season,
    )
