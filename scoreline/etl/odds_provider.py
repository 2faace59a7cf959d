"""football-data.co.uk fetcher for 1X2 odds.

GET /fixtures.csv lists upcoming fixtures across the covered leagues:

    Div,Date,Time,HomeTeam,AwayTeam,B365H,B365D,B365A,...,AvgH,AvgD,AvgA

Bet365 prices are preferred; market averages fill gaps. Rows are matched on
both team names (the teams' "football_data_uk" external id, else their name)
and the kickoff date. The file is memoized briefly since one download covers
every match.
"""

import csv
import io
import logging
import time
from datetime import datetime
from typing import Optional

from scoreline.etl.base import FetchRequest, MalformedPayload
from scoreline.etl.http import HttpFeedFetcher
from scoreline.models import MatchOdds, MatchRef, Provider, SourceType

logger = logging.getLogger(__name__)

FIXTURES_MEMO_SECONDS = 600.0
REQUIRED_COLUMNS = {"Date", "HomeTeam", "AwayTeam"}
PRICE_COLUMNS = (
    ("Bet365", "B365H", "B365D", "B365A"),
    ("Average", "AvgH", "AvgD", "AvgA"),
)


class FootballDataUkOddsFetcher(HttpFeedFetcher):
    BASE_URL = "https://www.football-data.co.uk"
    source_type = SourceType.ODDS

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._memo: Optional[tuple[float, list[dict]]] = None

    async def _fixtures(self) -> list[dict]:
        if self._memo and time.monotonic() - self._memo[0] < FIXTURES_MEMO_SECONDS:
            return self._memo[1]
        text = await self._get_text("/fixtures.csv")
        rows = parse_fixtures_csv(text)
        self._memo = (time.monotonic(), rows)
        return rows

    async def fetch(self, request: FetchRequest) -> Optional[MatchOdds]:
        rows = await self._fixtures()
        return find_match_odds(rows, request.match)


def parse_fixtures_csv(text: str) -> list[dict]:
    # The file ships with a UTF-8 BOM
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if reader.fieldnames is None:
        raise MalformedPayload("football_data_uk: empty fixtures file")
    missing = REQUIRED_COLUMNS - set(reader.fieldnames)
    if missing:
        raise MalformedPayload(f"football_data_uk: missing columns {sorted(missing)}")
    return list(reader)


def _normalize(name: str) -> str:
    return " ".join(name.lower().replace(".", "").split())


def _parse_date(value: str) -> Optional[datetime]:
    for fmt in ("%d/%m/%Y", "%d/%m/%y"):
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return None


def _price(row: dict, column: str) -> Optional[float]:
    raw = (row.get(column) or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 1.0 else None


def find_match_odds(rows: list[dict], match: MatchRef) -> Optional[MatchOdds]:
    """Odds for `match`, or None when the fixture is not listed (yet)."""
    home = _normalize(match.home.external_id(Provider.FOOTBALL_DATA_UK) or match.home.name)
    away = _normalize(match.away.external_id(Provider.FOOTBALL_DATA_UK) or match.away.name)
    kickoff_date = match.kickoff_utc.date()

    for row in rows:
        if _normalize(row.get("HomeTeam", "")) != home or _normalize(row.get("AwayTeam", "")) != away:
            continue
        played = _parse_date(row.get("Date", ""))
        if played is None or played.date() != kickoff_date:
            continue
        for bookmaker, home_col, draw_col, away_col in PRICE_COLUMNS:
            prices = (_price(row, home_col), _price(row, draw_col), _price(row, away_col))
            if all(p is not None for p in prices):
                return MatchOdds(
                    home_win=prices[0],
                    draw=prices[1],
                    away_win=prices[2],
                    bookmaker=bookmaker,
                )
        logger.info(f"[football_data_uk] fixture {home} v {away} listed without prices")
        return None
    return None
