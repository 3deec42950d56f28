"""
Live import workflows, one per (client session, relationship).

Creating a workflow for a pair that already has one tears the old one down
first, so its poll loop is gone before the new workflow can start polling.
"""

import asyncio
from collections.abc import Callable

from soulsync.features.chat_import.services.workflow import ImportWorkflow
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.refresh_signals import RefreshSignals
from soulsync.services.soulsync_api import SoulSyncApiClient
from soulsync.services.token_store import TokenStore

logger = get_logger(__name__)


def _default_api_factory(session_id: str) -> SoulSyncApiClient:
    return SoulSyncApiClient(TokenStore(session_id))


class ImportWorkflowRegistry:
    def __init__(
        self,
        api_factory: Callable[[str], object] = _default_api_factory,
        signals: RefreshSignals | None = None,
    ):
        self._api_factory = api_factory
        self._signals = signals
        self._workflows: dict[tuple[str, str], ImportWorkflow] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._workflows)

    def get(self, session_id: str, relationship_id: str) -> ImportWorkflow | None:
        return self._workflows.get((session_id, relationship_id))

    async def create(self, session_id: str, relationship_id: str) -> ImportWorkflow:
        async with self._lock:
            previous = self._workflows.pop((session_id, relationship_id), None)
            if previous is not None:
                logger.info(
                    "Replacing existing import workflow",
                    session_id=session_id,
                    relationship_id=relationship_id,
                    conversation_id=previous.conversation_id,
                )
                await previous.close()

            workflow = ImportWorkflow(
                relationship_id,
                self._api_factory(session_id),
                session_id=session_id,
                signals=self._signals,
                owns_api=True,
            )
            self._workflows[(session_id, relationship_id)] = workflow
            return workflow

    async def remove(self, session_id: str, relationship_id: str) -> bool:
        async with self._lock:
            workflow = self._workflows.pop((session_id, relationship_id), None)
        if workflow is None:
            return False
        await workflow.close()
        return True

    async def close_all(self) -> None:
        async with self._lock:
            workflows = list(self._workflows.values())
            self._workflows.clear()

        for workflow in workflows:
            try:
                await workflow.close()
            except Exception as e:
                logger.error(
                    "Error closing import workflow",
                    relationship_id=workflow.relationship_id,
                    error=str(e),
                )
        logger.info("Import workflows closed", count=len(workflows))


# Global instance used by the HTTP surface
workflow_registry = ImportWorkflowRegistry()
