"""
Watches the relationship-level analysis that the backend runs after an import.

The relationship counts as analyzed once its detailed profile carries a depth
score, an emotional volatility value and a non-empty topic distribution.
"""

import asyncio
from collections.abc import Awaitable, Callable

from soulsync.config import settings
from soulsync.features.chat_import.domain.models import RelationshipAnalysisState
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.soulsync_api import SoulSyncApiError

logger = get_logger(__name__)

TIMEOUT_MESSAGE = "Analysis is taking longer than expected. You can try refreshing manually."
CHECK_ERROR_MESSAGE = "Error checking analysis status. Please try refreshing manually."
REFRESH_TIMEOUT_MESSAGE = "Refresh attempt timed out. Please try again later."
REFRESH_ERROR_MESSAGE = "Error refreshing analysis. Please try again later."

REFRESH_START_PROGRESS = 30


def is_relationship_analyzed(profile: dict | None) -> bool:
    if not isinstance(profile, dict):
        return False
    metrics = profile.get("metrics")
    if not isinstance(metrics, dict):
        return False
    topics = profile.get("topicDistribution")
    return bool(
        metrics.get("depthScore")
        and metrics.get("emotionalVolatility")
        and isinstance(topics, list)
        and len(topics) > 0
    )


class RelationshipAnalysisMonitor:
    """Polls the detailed profile until the relationship analysis is populated."""

    def __init__(
        self,
        api,
        relationship_id: str,
        interval: float | None = None,
        max_attempts: int | None = None,
        refresh_attempts: int | None = None,
        on_complete: Callable[[dict], Awaitable[None]] | None = None,
    ):
        self.api = api
        self.relationship_id = relationship_id
        self.interval = settings.ANALYSIS_MONITOR_INTERVAL_SECONDS if interval is None else interval
        self.max_attempts = (
            settings.ANALYSIS_MONITOR_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        self.refresh_attempts = (
            settings.ANALYSIS_REFRESH_MAX_ATTEMPTS if refresh_attempts is None else refresh_attempts
        )
        self.on_complete = on_complete
        self.state = RelationshipAnalysisState()

    async def _check(self) -> bool:
        profile = await self.api.get_detailed_profile(self.relationship_id)
        if not is_relationship_analyzed(profile):
            return False

        self.state.progress = 100
        self.state.status = "completed"
        logger.info("Relationship analysis completed", relationship_id=self.relationship_id)
        if self.on_complete:
            await self.on_complete(profile)
        return True

    async def wait_for_analysis(self) -> RelationshipAnalysisState:
        self.state = RelationshipAnalysisState(status="analyzing")

        attempts = 0
        while True:
            if attempts >= self.max_attempts:
                self.state.status = "timeout"
                self.state.error = TIMEOUT_MESSAGE
                logger.warning(
                    "Relationship analysis monitor timed out",
                    relationship_id=self.relationship_id,
                    attempts=attempts,
                )
                return self.state

            self.state.progress = min(attempts / self.max_attempts * 100, 95)
            attempts += 1

            try:
                if await self._check():
                    return self.state
            except SoulSyncApiError as e:
                logger.error(
                    "Error checking analysis status",
                    relationship_id=self.relationship_id,
                    error=str(e),
                )
                self.state.status = "error"
                self.state.error = CHECK_ERROR_MESSAGE
                return self.state

            await asyncio.sleep(self.interval)

    async def refresh(self) -> RelationshipAnalysisState:
        """Trigger a manual analysis run, then watch it with fewer attempts."""
        self.state = RelationshipAnalysisState(status="analyzing", refreshing=True)

        try:
            await self.api.analyze_relationship(self.relationship_id)
        except SoulSyncApiError as e:
            logger.error(
                "Error refreshing analysis", relationship_id=self.relationship_id, error=str(e)
            )
            self.state.status = "error"
            self.state.error = REFRESH_ERROR_MESSAGE
            self.state.refreshing = False
            return self.state

        self.state.progress = REFRESH_START_PROGRESS

        attempts = 0
        while True:
            if attempts > self.refresh_attempts:
                self.state.status = "error"
                self.state.error = REFRESH_TIMEOUT_MESSAGE
                self.state.refreshing = False
                return self.state

            self.state.progress = REFRESH_START_PROGRESS + min(
                attempts / max(self.refresh_attempts, 1) * 70, 65
            )
            attempts += 1

            try:
                if await self._check():
                    self.state.refreshing = False
                    return self.state
            except SoulSyncApiError as e:
                logger.error(
                    "Error checking refreshed analysis",
                    relationship_id=self.relationship_id,
                    error=str(e),
                )
                self.state.status = "error"
                self.state.error = CHECK_ERROR_MESSAGE
                self.state.refreshing = False
                return self.state

            await asyncio.sleep(self.interval)
