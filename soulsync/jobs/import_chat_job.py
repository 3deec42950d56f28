"""
Import Chat Job: run one chat import end-to-end from the command line.

Walks the same workflow the HTTP surface drives (source -> file -> import ->
review), waits for the backend to finish and logs the resulting analysis
summary. Tokens come from SOULSYNC_ACCESS_TOKEN / SOULSYNC_REFRESH_TOKEN.
"""

import mimetypes
import os
import sys
from pathlib import Path

from soulsync.features.chat_import.domain.models import DEFAULT_CHAT_SOURCE, ChatFile
from soulsync.features.chat_import.services.workflow import ImportWorkflow
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.soulsync_api import SoulSyncApiClient
from soulsync.services.token_store import StaticTokenStore

logger = get_logger(__name__)


class ImportChatJobError(Exception):
    """The import could not be started or did not complete."""

    def __init__(self, message: str, relationship_id: str | None = None, step: int | None = None):
        super().__init__(message)
        self.relationship_id = relationship_id
        self.step = step


def _require(ok: bool, workflow: ImportWorkflow) -> None:
    if not ok:
        raise ImportChatJobError(
            workflow.error or "Import workflow could not advance",
            relationship_id=workflow.relationship_id,
            step=workflow.active_step,
        )


async def run_import_chat(
    relationship_id: str,
    file_path: str | Path,
    source: str = DEFAULT_CHAT_SOURCE,
    contact_phone: str | None = None,
    api=None,
    workflow: ImportWorkflow | None = None,
) -> dict:
    """
    Import one chat export and wait for the analysis.

    Returns:
        dict: Final workflow snapshot

    Raises:
        ImportChatJobError: If any step fails or the import ends unsuccessfully
    """
    path = Path(file_path)
    if not path.is_file():
        raise ImportChatJobError(f"Chat export not found: {path}", relationship_id=relationship_id)

    if workflow is None:
        api = api or SoulSyncApiClient(StaticTokenStore.from_settings())
        workflow = ImportWorkflow(relationship_id, api, owns_api=True)

    try:
        _require(workflow.select_source(source, contact_phone), workflow)
        _require(await workflow.next(), workflow)

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        _require(workflow.select_file(ChatFile(path.name, path.read_bytes(), content_type)), workflow)
        _require(await workflow.next(), workflow)

        logger.info(
            "Starting chat import",
            relationship_id=relationship_id,
            filename=path.name,
            estimated_time=workflow.estimated_time_remaining(),
        )
        _require(await workflow.next(), workflow)

        await workflow.wait()
        snapshot = workflow.snapshot()

        if not workflow.success:
            raise ImportChatJobError(
                workflow.error or "Import did not complete",
                relationship_id=relationship_id,
                step=workflow.active_step,
            )

        analysis = snapshot["analysis"] or {}
        logger.info(
            "Chat import completed",
            relationship_id=relationship_id,
            conversation_id=workflow.conversation_id,
            message_count=analysis.get("messageCount", 0),
            connection_score=analysis.get("connectionScore", 0),
            sentiment_label=analysis.get("sentimentLabel", ""),
            topics_processed=workflow.topics_processed,
            relationship_analysis=snapshot["relationship_analysis"]["status"],
        )
        return snapshot

    finally:
        await workflow.close()


async def start_import_chat_job() -> None:
    """
    Worker entry point.

    Arguments after the job name: <relationship_id> <file_path> [source] [contact_phone];
    IMPORT_RELATIONSHIP_ID / IMPORT_FILE_PATH / IMPORT_SOURCE / IMPORT_CONTACT_PHONE
    fill in anything not given on the command line.
    """
    args = sys.argv[2:]
    relationship_id = args[0] if len(args) > 0 else os.getenv("IMPORT_RELATIONSHIP_ID")
    file_path = args[1] if len(args) > 1 else os.getenv("IMPORT_FILE_PATH")
    source = args[2] if len(args) > 2 else os.getenv("IMPORT_SOURCE", DEFAULT_CHAT_SOURCE)
    contact_phone = args[3] if len(args) > 3 else os.getenv("IMPORT_CONTACT_PHONE")

    if not relationship_id or not file_path:
        raise ImportChatJobError("Usage: import_chat <relationship_id> <file_path> [source] [phone]")

    await run_import_chat(relationship_id, file_path, source, contact_phone)
