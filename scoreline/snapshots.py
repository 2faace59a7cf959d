"""Snapshot cache: latest payload per (feed, entity key) with freshness rules.

Usage:
    cache = SnapshotCache(settings.TTLS)

    cache.put(SourceType.FORM, team_key(42), form, fetched_at=now)
    snapshot, found = cache.get(SourceType.FORM, team_key(42))
    if found and cache.is_fresh(snapshot, now):
        ...

    # Event-anchored feeds carry their own expiry
    cache.put(SourceType.LINEUPS, match_key(9), lineup, fetched_at=now,
              valid_until=match.kickoff_utc)

Staleness is evaluated at read time. Nothing is evicted; a stale snapshot stays
readable for diagnostics until the next successful fetch overwrites it.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, Optional

from scoreline.config import SourceTTLs
from scoreline.models import Payload, SourceType
from scoreline.utils.clock import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """One provider's latest data for one entity."""

    source_type: SourceType
    entity_key: str
    payload: Payload
    fetched_at: datetime
    expires_at: datetime

    @property
    def ttl(self) -> timedelta:
        return self.expires_at - self.fetched_at

    def age(self, now: datetime) -> timedelta:
        return ensure_utc(now) - self.fetched_at


class SnapshotCache:
    """In-memory snapshot store.

    Writes take a short lock so a reader never observes a half-replaced entry;
    reads are plain dict lookups of immutable Snapshot objects.
    """

    def __init__(self, ttls: SourceTTLs):
        self.ttls = ttls
        self._entries: dict[tuple[SourceType, str], Snapshot] = {}
        self._write_lock = threading.Lock()

    def get(self, source_type: SourceType, key: str) -> tuple[Optional[Snapshot], bool]:
        """Return (snapshot, found)."""
        snapshot = self._entries.get((source_type, key))
        return snapshot, snapshot is not None

    def put(
        self,
        source_type: SourceType,
        key: str,
        payload: Payload,
        fetched_at: datetime,
        valid_until: Optional[datetime] = None,
    ) -> Snapshot:
        """Upsert a snapshot (last write wins).

        Raises:
            ValueError: if the resulting expiry is not strictly after fetched_at,
                or an event-anchored feed is stored without valid_until.
        """
        fetched_at = ensure_utc(fetched_at)
        ttl = self.ttls.ttl_for(source_type)
        if ttl is None:
            if valid_until is None:
                raise ValueError(f"{source_type.value} snapshots need valid_until (event-anchored)")
            expires_at = ensure_utc(valid_until)
        else:
            expires_at = fetched_at + ttl

        if expires_at <= fetched_at:
            raise ValueError(
                f"{source_type.value}:{key} would expire at {expires_at.isoformat()}, "
                f"not after fetch time {fetched_at.isoformat()}"
            )

        snapshot = Snapshot(
            source_type=source_type,
            entity_key=key,
            payload=payload,
            fetched_at=fetched_at,
            expires_at=expires_at,
        )
        with self._write_lock:
            self._entries[(source_type, key)] = snapshot
        logger.debug(f"[CACHE] put {source_type.value}:{key} expires={expires_at.isoformat()}")
        return snapshot

    def is_fresh(self, snapshot: Snapshot, now: datetime) -> bool:
        return ensure_utc(now) <= snapshot.expires_at

    def is_within_grace(self, snapshot: Snapshot, now: datetime) -> bool:
        """Fresh, or stale by no more than the configured grace window.

        Event-anchored snapshots get no grace: a lineup is meaningless after kickoff.
        """
        if self.is_fresh(snapshot, now):
            return True
        grace = self.ttls.stale_grace
        if grace <= timedelta(0) or self.ttls.ttl_for(snapshot.source_type) is None:
            return False
        return ensure_utc(now) <= snapshot.expires_at + grace

    def needs_refresh(self, source_type: SourceType, key: str, now: datetime) -> bool:
        """True when the entry is missing or stale."""
        snapshot, found = self.get(source_type, key)
        return not found or not self.is_fresh(snapshot, now)

    def entries(self, source_type: Optional[SourceType] = None) -> Iterator[Snapshot]:
        for (entry_source, _), snapshot in list(self._entries.items()):
            if source_type is None or entry_source == source_type:
                yield snapshot

    def describe(self, now: datetime) -> dict:
        """Per-feed counts of fresh and stale entries."""
        summary: dict[str, dict] = {}
        for snapshot in self.entries():
            bucket = summary.setdefault(snapshot.source_type.value, {"fresh": 0, "stale": 0})
            if self.is_fresh(snapshot, now):
                bucket["fresh"] += 1
            else:
                bucket["stale"] += 1
        return summary

    def __len__(self) -> int:
        return len(self._entries)
