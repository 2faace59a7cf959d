"""Abstract base class for feed fetchers and the acquisition error taxonomy."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from scoreline.models import (
    SOURCE_PROVIDERS,
    SOURCE_TIERS,
    MatchRef,
    Payload,
    Provider,
    SourceType,
    TeamRef,
    Tier,
)


class ProviderError(Exception):
    """Base class for failures that count against a provider's health."""


class ProviderUnavailable(ProviderError):
    """Transport, auth or non-2xx failure."""


class MalformedPayload(ProviderError):
    """Response arrived but could not be normalized; nothing may be written."""


@dataclass(frozen=True)
class FetchRequest:
    """One entity to acquire.

    match is the soonest upcoming match that needs the entity; team is set for
    team-keyed feeds.
    """

    source_type: SourceType
    key: str
    match: MatchRef
    team: Optional[TeamRef] = None


class FeedFetcher(ABC):
    """Fetches one feed and returns its normalized payload."""

    source_type: SourceType

    @property
    def provider(self) -> Provider:
        return SOURCE_PROVIDERS[self.source_type]

    @property
    def tier(self) -> Tier:
        return SOURCE_TIERS[self.source_type]

    @abstractmethod
    async def fetch(self, request: FetchRequest) -> Optional[Payload]:
        """
        Fetch and normalize one entity.

        Returns:
            The payload, or None when the provider has nothing yet (for example
            line-ups before they are announced). None is not a failure.

        Raises:
            ProviderUnavailable: transport/auth/HTTP failure.
            MalformedPayload: the response could not be normalized.
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass
