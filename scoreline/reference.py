"""Reference data: matches, teams and kickoff times.

The engine does not own persistence. Anything that can answer the two
MatchDirectory questions can back it; InMemoryMatchDirectory covers scripts
and tests and can be loaded from a JSON fixtures file:

    {
      "matches": [
        {
          "match_id": 1001,
          "kickoff_utc": "2026-03-01T15:00:00Z",
          "competition": "EPL",
          "season": 2025,
          "matchday": 31,
          "external_ids": {"api_football": 1208001, "understat_league": "EPL"},
          "home": {"team_id": 33, "name": "Manchester United",
                   "external_ids": {"api_football": 33, "clubelo": "ManUnited"}},
          "away": {"team_id": 40, "name": "Liverpool", "external_ids": {...}}
        }
      ]
    }
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from scoreline.models import MatchRef, TeamRef
from scoreline.utils.clock import ensure_utc

logger = logging.getLogger(__name__)


class MatchDirectory(Protocol):
    def get_match(self, match_id: int) -> Optional[MatchRef]:
        ...

    def upcoming_matches(self, start: datetime, end: datetime) -> list[MatchRef]:
        """Matches with start <= kickoff < end, soonest first."""
        ...


class InMemoryMatchDirectory:
    def __init__(self, matches: Optional[list[MatchRef]] = None):
        self._matches: dict[int, MatchRef] = {}
        self._lock = threading.Lock()
        for match in matches or []:
            self.add(match)

    def add(self, match: MatchRef) -> None:
        with self._lock:
            self._matches[match.match_id] = match

    def remove(self, match_id: int) -> None:
        with self._lock:
            self._matches.pop(match_id, None)

    def get_match(self, match_id: int) -> Optional[MatchRef]:
        return self._matches.get(match_id)

    def upcoming_matches(self, start: datetime, end: datetime) -> list[MatchRef]:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            matches = list(self._matches.values())
        selected = [m for m in matches if start <= m.kickoff_utc < end]
        return sorted(selected, key=lambda m: (m.kickoff_utc, m.match_id))

    def __len__(self) -> int:
        return len(self._matches)

    @classmethod
    def from_json_file(cls, path: "str | Path") -> "InMemoryMatchDirectory":
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        matches = [parse_match(item) for item in data.get("matches", [])]
        logger.info(f"Loaded {len(matches)} matches from {path}")
        return cls(matches)


def parse_team(data: dict) -> TeamRef:
    return TeamRef(
        team_id=int(data["team_id"]),
        name=data["name"],
        external_ids=dict(data.get("external_ids") or {}),
        usual_starters=tuple(data.get("usual_starters") or ()),
    )


def parse_match(data: dict) -> MatchRef:
    kickoff = datetime.fromisoformat(str(data["kickoff_utc"]).replace("Z", "+00:00"))
    return MatchRef(
        match_id=int(data["match_id"]),
        kickoff_utc=ensure_utc(kickoff),
        home=parse_team(data["home"]),
        away=parse_team(data["away"]),
        competition=data.get("competition", ""),
        season=data.get("season"),
        matchday=int(data["matchday"]) if data.get("matchday") is not None else None,
        external_ids=dict(data.get("external_ids") or {}),
    )
