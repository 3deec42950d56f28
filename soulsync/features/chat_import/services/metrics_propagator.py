"""
Push an import's results into the parent relationship.

Topic handling depends on history: a relationship with earlier conversations
gets its topics re-derived from all of them, a fresh one takes the import's
own top topics. Whatever happens there, the metrics recalculation is still
attempted so the relationship never keeps stale metrics because of a topic
failure.
"""

from soulsync.features.chat_import.domain.models import ImportAnalysis
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.refresh_signals import RefreshSignals
from soulsync.services.soulsync_api import SoulSyncApiError

logger = get_logger(__name__)


class MetricsPropagator:
    def __init__(self, api, signals: RefreshSignals | None = None):
        self.api = api
        self.signals = signals or RefreshSignals()

    async def update_topics(self, relationship_id: str, analysis: ImportAnalysis) -> str:
        """
        Refresh the relationship's topic distribution.

        Returns:
            Which branch ran: "conversations", "imported" or "skipped"
        """
        topics = analysis.topics_for_update()
        if not topics:
            return "skipped"

        if await self.api.has_conversations(relationship_id):
            await self.api.analyze_topics(relationship_id)
            return "conversations"

        await self.api.update_topic_distribution(relationship_id, topics)
        return "imported"

    async def force_recalculate(
        self,
        relationship_id: str,
        session_id: str | None = None,
        conversation_id: str | None = None,
    ) -> bool:
        """Recalculate metrics server-side and raise the refresh signals on success."""
        try:
            await self.api.recalculate_metrics(relationship_id)
        except SoulSyncApiError as e:
            logger.error(
                "Error updating relationship metrics",
                relationship_id=relationship_id,
                error=str(e),
                status_code=e.status_code,
            )
            return False

        await self.signals.notify_import_completed(
            relationship_id, session_id=session_id, conversation_id=conversation_id
        )
        return True

    async def propagate(
        self,
        relationship_id: str,
        analysis: ImportAnalysis,
        session_id: str | None = None,
        conversation_id: str | None = None,
    ) -> bool:
        """Update topics, then always attempt the metrics recalculation."""
        try:
            branch = await self.update_topics(relationship_id, analysis)
            logger.info(
                "Relationship topics updated",
                relationship_id=relationship_id,
                branch=branch,
            )
        except Exception as e:
            logger.error(
                "Error updating relationship topics",
                relationship_id=relationship_id,
                error=str(e),
                error_type=type(e).__name__,
            )

        metrics_updated = await self.force_recalculate(
            relationship_id, session_id=session_id, conversation_id=conversation_id
        )
        if not metrics_updated:
            logger.warning(
                "Topics updated but metrics update may have failed",
                relationship_id=relationship_id,
            )
        return metrics_updated
