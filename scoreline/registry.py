"""Capability registry: which providers are wired up in this deployment.

"Is this provider enabled at all" is a deployment decision and lives here.
"Is it currently usable" is a runtime question answered by health + freshness.
"""

import logging
from typing import Iterable

from scoreline.models import SOURCE_PROVIDERS, Provider, SourceType

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    def __init__(self, enabled: Iterable[Provider] = ()):
        self._enabled: set[Provider] = set(enabled)

    def is_enabled(self, provider: Provider) -> bool:
        return provider in self._enabled

    def supports(self, source_type: SourceType) -> bool:
        return SOURCE_PROVIDERS[source_type] in self._enabled

    def enable(self, provider: Provider) -> None:
        self._enabled.add(provider)
        logger.info(f"[REGISTRY] {provider.value} enabled")

    def disable(self, provider: Provider) -> None:
        self._enabled.discard(provider)
        logger.info(f"[REGISTRY] {provider.value} removed")

    @property
    def enabled(self) -> frozenset[Provider]:
        return frozenset(self._enabled)
