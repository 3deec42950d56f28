"""
Completion handling for chat imports: fetch the analysis exactly once.

Overlapping poll ticks or repeated completion events may all ask for the
analysis; only the first request reaches the backend. A failed fetch still
leaves a renderable (fallback) analysis behind.
"""

from soulsync.features.chat_import.domain.models import ImportAnalysis, is_success
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.soulsync_api import SoulSyncApiError

logger = get_logger(__name__)

FETCH_ERROR_MESSAGE = "Error fetching import analysis"


class AnalysisFetcher:
    """Guarded, single-shot analysis fetch for one import job."""

    def __init__(self, api):
        self.api = api
        self.requested = False
        self.succeeded = False
        self.analysis: ImportAnalysis | None = None
        self.error: str | None = None

    def reset(self) -> None:
        """Forget the previous job so a retried import can fetch again."""
        self.requested = False
        self.succeeded = False
        self.analysis = None
        self.error = None

    def should_fetch(self, status: str | None) -> bool:
        return is_success(status) and not self.requested

    async def fetch_once(self, conversation_id: str) -> ImportAnalysis | None:
        """
        Fetch and normalize the analysis unless it was already requested.

        Returns:
            The analysis (possibly the fallback), or None when a previous
            call is still in flight.
        """
        if self.requested:
            logger.debug("Import analysis already requested", conversation_id=conversation_id)
            return self.analysis

        self.requested = True
        try:
            payload = await self.api.get_import_analysis(conversation_id)
        except SoulSyncApiError as e:
            logger.error(
                "Error fetching import analysis",
                conversation_id=conversation_id,
                error=str(e),
                status_code=e.status_code,
            )
            self.error = e.message or FETCH_ERROR_MESSAGE
            self.analysis = ImportAnalysis.fallback()
            return self.analysis

        self.analysis = ImportAnalysis(payload)
        self.succeeded = True
        logger.info(
            "Import analysis fetched",
            conversation_id=conversation_id,
            message_count=self.analysis.message_count,
            topic_count=len(self.analysis.top_topics),
        )
        return self.analysis
