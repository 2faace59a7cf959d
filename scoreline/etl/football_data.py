"""football-data.org fetcher for team form.

GET /v4/teams/{id}/matches?status=FINISHED&limit={n}
Header: X-Auth-Token

Finished matches are reduced to a TeamForm with calculate_team_form().
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from scoreline.etl.base import FetchRequest, MalformedPayload
from scoreline.etl.http import HttpFeedFetcher
from scoreline.features.form import FinishedMatch, calculate_team_form
from scoreline.models import Provider, SourceType, TeamForm
from scoreline.utils.clock import ensure_utc

logger = logging.getLogger(__name__)


class FootballDataFormFetcher(HttpFeedFetcher):
    BASE_URL = "https://api.football-data.org/v4"
    source_type = SourceType.FORM

    def __init__(
        self,
        token: str,
        window: int = 5,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        super().__init__(client=client, **kwargs)
        self.token = token
        self.window = window

    def _headers(self) -> dict:
        headers = super()._headers()
        if self.token:
            headers["X-Auth-Token"] = self.token
        return headers

    async def fetch(self, request: FetchRequest) -> Optional[TeamForm]:
        team = request.team
        team_id = team.external_id(Provider.FOOTBALL_DATA) if team else None
        if team_id is None:
            logger.warning(f"[football_data] no team id mapping for {request.key}, skipping")
            return None

        # Ask for a few extra in case some rows lack a full-time score
        data = await self._get_json(
            f"/teams/{team_id}/matches",
            {"status": "FINISHED", "limit": self.window + 3},
        )
        matches = parse_finished_matches(data)
        return calculate_team_form(
            int(team_id), matches, window=self.window, calculated_at=request.match.kickoff_utc
        )


def parse_finished_matches(data: object) -> list[FinishedMatch]:
    if not isinstance(data, dict) or not isinstance(data.get("matches"), list):
        raise MalformedPayload("football_data: 'matches' missing")

    results = []
    for item in data["matches"]:
        try:
            full_time = item["score"]["fullTime"]
            home_goals, away_goals = full_time["home"], full_time["away"]
            if home_goals is None or away_goals is None:
                continue
            results.append(FinishedMatch(
                played_at=ensure_utc(datetime.fromisoformat(item["utcDate"].replace("Z", "+00:00"))),
                home_team_id=int(item["homeTeam"]["id"]),
                away_team_id=int(item["awayTeam"]["id"]),
                home_goals=int(home_goals),
                away_goals=int(away_goals),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedPayload(f"football_data: bad match entry: {e}") from e
    return results
