"""ClubElo fetcher.

GET http://api.clubelo.com/{Club} returns the club's rating history as CSV:

    Rank,Club,Country,Level,Elo,From,To
    None,ManUnited,ENG,1,1850.5,2025-08-01,2025-08-15

The last row is the current rating. The club slug comes from the team's
"clubelo" external id, or its name with spaces removed.
"""

import csv
import io
import logging
from datetime import datetime, timezone
from typing import Optional

from scoreline.etl.base import FetchRequest, MalformedPayload
from scoreline.etl.http import HttpFeedFetcher
from scoreline.models import EloRating, Provider, SourceType

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"Rank", "Club", "Elo", "From"}


class ClubEloFetcher(HttpFeedFetcher):
    BASE_URL = "http://api.clubelo.com"
    source_type = SourceType.ELO

    async def fetch(self, request: FetchRequest) -> Optional[EloRating]:
        team = request.team
        if team is None:
            return None
        slug = team.external_id(Provider.CLUBELO) or team.name.replace(" ", "")
        text = await self._get_text(f"/{slug}")
        return parse_clubelo_csv(text)


def parse_clubelo_csv(text: str) -> Optional[EloRating]:
    """Latest rating from a ClubElo history CSV. None for an empty history."""
    reader = csv.DictReader(io.StringIO(text))
    if reader.fieldnames is None:
        return None
    missing = REQUIRED_COLUMNS - set(reader.fieldnames)
    if missing:
        raise MalformedPayload(f"clubelo: missing columns {sorted(missing)}")

    rows = [row for row in reader if row.get("Elo")]
    if not rows:
        return None
    last = rows[-1]
    try:
        rating = float(last["Elo"])
    except ValueError as e:
        raise MalformedPayload(f"clubelo: bad Elo value {last['Elo']!r}") from e

    rank = last.get("Rank")
    rated_on = None
    if last.get("From"):
        try:
            rated_on = datetime.strptime(last["From"], "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug(f"[clubelo] unparseable From date {last['From']!r}")
    return EloRating(
        rating=rating,
        rank=int(rank) if rank and rank.isdigit() else None,
        rated_on=rated_on,
    )
