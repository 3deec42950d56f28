"""
Import workflow controller.

Steps: Select Source (0) -> Upload File (1) -> Process Import (2) ->
Review Analysis (3).

The user moves forward with next(); step 2 submits the file and hands over to
the status poller, and terminal success moves the workflow to step 3 on its
own. Guard violations never raise: they set ``error`` for display, as does
every backend failure inside the workflow.
"""

import asyncio
import time
from contextlib import suppress
from datetime import UTC, datetime

from soulsync.features.chat_import.domain.models import (
    ALLOWED_FILE_EXTENSIONS,
    CHAT_SOURCES,
    DEFAULT_CHAT_SOURCE,
    STATUS_NONE,
    STATUS_PROCESSING,
    STEP_LABELS,
    STEP_PROCESS_IMPORT,
    STEP_REVIEW_ANALYSIS,
    STEP_SELECT_SOURCE,
    STEP_UPLOAD_FILE,
    ChatFile,
    ImportAnalysis,
    ImportJob,
    is_success,
    is_terminal,
)
from soulsync.features.chat_import.services.analysis_fetcher import AnalysisFetcher
from soulsync.features.chat_import.services.analysis_monitor import RelationshipAnalysisMonitor
from soulsync.features.chat_import.services.metrics_propagator import MetricsPropagator
from soulsync.features.chat_import.services.progress_estimator import (
    ProgressEstimator,
    estimate_time_remaining,
    progress_phase_message,
)
from soulsync.features.chat_import.services.status_poller import StatusPoller
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.refresh_signals import RefreshSignals
from soulsync.services.soulsync_api import SoulSyncApiError

logger = get_logger(__name__)

SELECT_SOURCE_ERROR = "Please select a chat source"
UNSUPPORTED_SOURCE_ERROR = "Unsupported chat source"
SELECT_FILE_ERROR = "Please select a file to upload"
UNSUPPORTED_FILE_ERROR = "Unsupported file type. Allowed types: " + ", ".join(
    ALLOWED_FILE_EXTENSIONS
)
IMPORT_ERROR = "Error importing chat history"
IMPORT_FAILED_ERROR = "Import failed. Please try again."
IMPORT_TIMEOUT_ERROR = "Import is taking longer than expected. You can check back later."
MISSING_CONVERSATION_ERROR = "Conversation ID is missing. Please try again."


class WorkflowError(Exception):
    """Invalid workflow construction or use."""

    def __init__(self, message: str, relationship_id: str | None = None):
        super().__init__(message)
        self.relationship_id = relationship_id


class ImportWorkflow:
    """
    Drives one chat import for a relationship from source selection to review.

    Owns exactly one status poller; close() stops it and any follow-up work.
    Closing never cancels the server-side job.
    """

    def __init__(
        self,
        relationship_id: str,
        api,
        session_id: str | None = None,
        signals: RefreshSignals | None = None,
        poller: StatusPoller | None = None,
        monitor: RelationshipAnalysisMonitor | None = None,
        owns_api: bool = False,
    ):
        if not relationship_id:
            raise WorkflowError("relationship_id is required")

        self.relationship_id = relationship_id
        self.session_id = session_id
        self.api = api
        self.owns_api = owns_api

        self.active_step = STEP_SELECT_SOURCE
        self.chat_source = DEFAULT_CHAT_SOURCE
        self.contact_phone = ""
        self.file: ChatFile | None = None
        self.loading = False
        self.error = ""
        self.success = False
        self.job: ImportJob | None = None
        self.topics_processed = False

        self.estimator = ProgressEstimator()
        self.fetcher = AnalysisFetcher(api)
        self.propagator = MetricsPropagator(api, signals)
        self.poller = poller or StatusPoller(api)
        self.monitor = monitor or RelationshipAnalysisMonitor(api, relationship_id)
        self._monitor_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def conversation_id(self) -> str | None:
        return self.job.conversation_id if self.job else None

    @property
    def status(self) -> str:
        return self.job.status if self.job else STATUS_NONE

    @property
    def progress(self) -> int:
        return self.estimator.displayed

    @property
    def analysis(self) -> ImportAnalysis | None:
        return self.fetcher.analysis

    @property
    def is_processing(self) -> bool:
        """Uploading, or a poll loop is still following a processing job."""
        return self.loading or (self.status == STATUS_PROCESSING and self.poller.is_running)

    @property
    def can_go_back(self) -> bool:
        return not (self.active_step == STEP_PROCESS_IMPORT and self.is_processing)

    @property
    def can_start_import(self) -> bool:
        return (
            self.active_step == STEP_PROCESS_IMPORT
            and not self.loading
            and not self.success
            and not self.is_processing
        )

    def estimated_time_remaining(self) -> str:
        message_count = self.job.message_count if self.job else None
        file_size = self.file.size if self.file else None
        return estimate_time_remaining(self.progress, message_count, file_size)

    # ------------------------------------------------------------------
    # Steps 0 and 1
    # ------------------------------------------------------------------

    def select_source(self, source: str | None, contact_phone: str | None = None) -> bool:
        if not source:
            self.error = SELECT_SOURCE_ERROR
            return False
        if source not in CHAT_SOURCES:
            self.error = UNSUPPORTED_SOURCE_ERROR
            return False

        self.chat_source = source
        if contact_phone is not None:
            self.contact_phone = contact_phone.strip()
        self.error = ""
        return True

    def select_file(self, chat_file: ChatFile) -> bool:
        if not chat_file.has_allowed_extension():
            self.error = UNSUPPORTED_FILE_ERROR
            return False

        self.file = chat_file
        self.error = ""
        logger.info(
            "Chat export selected",
            relationship_id=self.relationship_id,
            filename=chat_file.filename,
            size=chat_file.size,
        )
        return True

    async def next(self) -> bool:
        """The Next / Start Import button. Returns whether anything advanced."""
        if self.active_step == STEP_SELECT_SOURCE and not self.chat_source:
            self.error = SELECT_SOURCE_ERROR
            return False

        if self.active_step == STEP_UPLOAD_FILE and not self.file:
            self.error = SELECT_FILE_ERROR
            return False

        if self.active_step == STEP_PROCESS_IMPORT:
            return await self.start_import()

        if self.active_step >= STEP_REVIEW_ANALYSIS:
            return False

        self.active_step += 1
        self.error = ""
        return True

    def back(self) -> str | None:
        """
        The Back button.

        Returns:
            The profile path when leaving the workflow from step 0, else None.
        """
        if not self.can_go_back:
            logger.debug(
                "Back navigation blocked while import is processing",
                relationship_id=self.relationship_id,
                conversation_id=self.conversation_id,
            )
            return None

        if self.active_step == STEP_SELECT_SOURCE:
            return f"/relationships/{self.relationship_id}"

        self.active_step -= 1
        self.error = ""
        return None

    # ------------------------------------------------------------------
    # Step 2: submit and poll
    # ------------------------------------------------------------------

    async def start_import(self) -> bool:
        if not self.can_start_import:
            logger.debug(
                "Start import ignored",
                relationship_id=self.relationship_id,
                step=self.active_step,
                status=self.status,
                loading=self.loading,
            )
            return False

        if not self.file:
            self.error = SELECT_FILE_ERROR
            return False

        # A retry starts from a clean slate
        self.poller.stop()
        self.estimator.reset()
        self.fetcher.reset()
        self.topics_processed = False
        self.loading = True
        self.error = ""

        try:
            response = await self.api.import_chat(
                self.relationship_id,
                self.file.filename,
                self.file.content,
                self.chat_source,
                contact_phone=self.contact_phone or None,
                content_type=self.file.content_type,
            )
        except SoulSyncApiError as e:
            logger.error(
                "Import error", relationship_id=self.relationship_id, error=str(e)
            )
            self.error = e.message or IMPORT_ERROR
            return False
        finally:
            self.loading = False

        conversation_id = response.get("conversationId") if isinstance(response, dict) else None
        if not conversation_id:
            logger.error(
                "Import response without conversation id", relationship_id=self.relationship_id
            )
            self.error = IMPORT_ERROR
            return False

        self.job = ImportJob(
            conversation_id=str(conversation_id),
            status=STATUS_PROCESSING,
            file_size=self.file.size,
            message_count=response.get("messageCount") or 0,
        )
        logger.info(
            "Conversation created from import",
            relationship_id=self.relationship_id,
            conversation_id=self.job.conversation_id,
            message_count=self.job.message_count,
        )

        self.poller.start(
            self.job.conversation_id,
            on_status=self.handle_status,
            on_error=self._handle_poll_error,
            on_stalled=self._handle_stalled,
            on_timeout=self._handle_timeout,
        )
        return True

    async def handle_status(self, payload: dict) -> bool:
        """Apply one status response. Returns True once the job is terminal."""
        if self.job is None:
            return True

        status = payload.get("status") or self.job.status
        self.job.status = status
        self.job.last_polled_at = datetime.now(UTC)
        self.job.progress = self.estimator.observe(payload.get("progress", 0))

        if not is_terminal(status):
            return False

        if is_success(status):
            await self._complete()
        else:
            self._fail()
        return True

    async def _complete(self) -> None:
        self.success = True
        self.job.progress = self.estimator.complete()
        self.active_step = STEP_REVIEW_ANALYSIS

        if not self.fetcher.should_fetch(self.status):
            return

        await self.fetcher.fetch_once(self.job.conversation_id)
        if not self.fetcher.succeeded:
            self.error = self.fetcher.error or ""
            return

        updated = await self.propagator.propagate(
            self.relationship_id,
            self.fetcher.analysis,
            session_id=self.session_id,
            conversation_id=self.job.conversation_id,
        )
        if updated:
            self.topics_processed = True
            self._start_monitor(self.monitor.wait_for_analysis)
            logger.info(
                "Topics and metrics successfully updated for relationship",
                relationship_id=self.relationship_id,
                conversation_id=self.job.conversation_id,
            )

    def _fail(self) -> None:
        self.error = IMPORT_FAILED_ERROR
        self.job.progress = 0
        self.estimator.reset()
        logger.warning(
            "Import failed on the server",
            relationship_id=self.relationship_id,
            conversation_id=self.job.conversation_id,
        )

    async def _handle_poll_error(self, error: SoulSyncApiError) -> None:
        self.error = error.message or "Error checking import status"

    async def _handle_stalled(self) -> None:
        if self.job:
            self.job.stalled = True

    async def _handle_timeout(self) -> None:
        self.error = IMPORT_TIMEOUT_ERROR

    # ------------------------------------------------------------------
    # Step 3: review and leave
    # ------------------------------------------------------------------

    def _start_monitor(self, runner) -> None:
        if self._monitor_task is not None and not self._monitor_task.done():
            self._monitor_task.cancel()
        self._monitor_task = asyncio.create_task(
            runner(), name=f"relationship-analysis:{self.relationship_id}"
        )

    async def refresh_relationship_analysis(self) -> None:
        """Manual refresh of the relationship analysis (runs in the background)."""
        self._start_monitor(self.monitor.refresh)

    async def go_to_relationship(self) -> str:
        """Force a metrics update, then hand back the profile path with a cache buster."""
        await self.propagator.force_recalculate(
            self.relationship_id, session_id=self.session_id, conversation_id=self.conversation_id
        )
        return f"/relationships/{self.relationship_id}?refresh={int(time.time() * 1000)}"

    async def go_to_conversation(self) -> str | None:
        await self.propagator.force_recalculate(
            self.relationship_id, session_id=self.session_id, conversation_id=self.conversation_id
        )
        if not self.conversation_id:
            self.error = MISSING_CONVERSATION_ERROR
            return None
        return f"/conversations/{self.conversation_id}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait(self) -> None:
        """Wait for the poll loop and any analysis monitoring to finish."""
        await self.poller.wait()
        if self._monitor_task is not None:
            with suppress(asyncio.CancelledError):
                await self._monitor_task

    async def close(self) -> None:
        """Tear down timers and tasks. The backend job keeps running."""
        self.poller.stop()
        await self.poller.wait()

        if self._monitor_task is not None and not self._monitor_task.done():
            self._monitor_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._monitor_task

        if self.owns_api:
            await self.api.close()

        logger.info(
            "Import workflow closed",
            relationship_id=self.relationship_id,
            conversation_id=self.conversation_id,
            status=self.status,
        )

    def snapshot(self) -> dict:
        analysis = self.analysis
        return {
            "relationship_id": self.relationship_id,
            "active_step": self.active_step,
            "step_label": STEP_LABELS[self.active_step],
            "steps": list(STEP_LABELS),
            "chat_source": self.chat_source,
            "contact_phone": self.contact_phone,
            "filename": self.file.filename if self.file else None,
            "file_size": self.file.size if self.file else 0,
            "conversation_id": self.conversation_id,
            "status": self.status,
            "progress": self.progress,
            "phase_message": progress_phase_message(self.progress),
            "estimated_time_remaining": self.estimated_time_remaining(),
            "message_count": self.job.message_count if self.job else 0,
            "stalled": self.job.stalled if self.job else False,
            "loading": self.loading,
            "success": self.success,
            "error": self.error,
            "analysis": analysis.to_dict() if analysis else None,
            "topics_processed": self.topics_processed,
            "relationship_analysis": self.monitor.state.to_dict(),
            "can_go_back": self.can_go_back,
            "can_start_import": self.can_start_import,
        }
