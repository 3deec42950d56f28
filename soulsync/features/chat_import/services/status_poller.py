"""
Status poller for in-flight chat imports.

Runs one asyncio task per poller that asks the backend for the job status
every ``interval`` seconds until the handler reports a terminal status, a
request fails, the deadline passes, or the owner calls ``stop()``. Starting a
new poll always cancels the previous one, so a poller never has two loops
racing on the same job.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress

from soulsync.config import settings
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.soulsync_api import SoulSyncApiError

logger = get_logger(__name__)

StatusHandler = Callable[[dict], Awaitable[bool]]
ErrorHandler = Callable[[SoulSyncApiError], Awaitable[None]]
EventHandler = Callable[[], Awaitable[None]]


class StatusPoller:
    """Owns the single poll loop of a workflow."""

    def __init__(
        self,
        api,
        interval: float | None = None,
        stall_after: float | None = None,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        poll_config = settings.get_poll_config()
        self.api = api
        self.interval = poll_config["interval"] if interval is None else interval
        self.stall_after = poll_config["stall_after"] if stall_after is None else stall_after
        self.timeout = poll_config["timeout"] if timeout is None else timeout
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._stop_requested = False
        self.conversation_id: str | None = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(
        self,
        conversation_id: str,
        on_status: StatusHandler,
        on_error: ErrorHandler,
        on_stalled: EventHandler | None = None,
        on_timeout: EventHandler | None = None,
    ) -> asyncio.Task:
        """Begin polling ``conversation_id``, cancelling any loop already running."""
        if not conversation_id:
            raise ValueError("conversation_id is required to poll import status")

        self.stop()
        self._stop_requested = False
        self.conversation_id = conversation_id
        self.ticks = 0
        self._task = asyncio.create_task(
            self._run(conversation_id, on_status, on_error, on_stalled, on_timeout),
            name=f"import-status-poll:{conversation_id}",
        )
        logger.info("Import status polling started", conversation_id=conversation_id)
        return self._task

    def stop(self) -> None:
        """Stop polling. Safe to call from inside a handler and when idle."""
        self._stop_requested = True
        task = self._task
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()
        logger.info("Import status polling stopped", conversation_id=self.conversation_id)

    async def wait(self) -> None:
        """Wait until the current loop (if any) has exited."""
        if self._task is not None:
            with suppress(asyncio.CancelledError):
                await self._task

    async def _run(
        self,
        conversation_id: str,
        on_status: StatusHandler,
        on_error: ErrorHandler,
        on_stalled: EventHandler | None,
        on_timeout: EventHandler | None,
    ) -> None:
        started = self._clock()
        stalled = False

        while not self._stop_requested:
            await asyncio.sleep(self.interval)
            if self._stop_requested:
                break

            elapsed = self._clock() - started
            if self.timeout and elapsed >= self.timeout:
                logger.warning(
                    "Import status polling timed out",
                    conversation_id=conversation_id,
                    elapsed_seconds=round(elapsed, 1),
                    ticks=self.ticks,
                )
                if on_timeout:
                    await on_timeout()
                return

            if self.stall_after and not stalled and elapsed >= self.stall_after:
                stalled = True
                logger.info(
                    "Import still processing after stall threshold",
                    conversation_id=conversation_id,
                    elapsed_seconds=round(elapsed, 1),
                )
                if on_stalled:
                    await on_stalled()

            self.ticks += 1
            try:
                payload = await self.api.get_import_status(conversation_id)
            except SoulSyncApiError as e:
                logger.error(
                    "Error checking import status",
                    conversation_id=conversation_id,
                    error=str(e),
                    status_code=e.status_code,
                )
                await on_error(e)
                return
            except Exception as e:
                logger.error(
                    "Unexpected error checking import status",
                    conversation_id=conversation_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await on_error(
                    SoulSyncApiError("Error checking import status", operation="get_import_status")
                )
                return

            try:
                terminal = await on_status(payload if isinstance(payload, dict) else {})
            except Exception as e:
                logger.error(
                    "Error applying import status",
                    conversation_id=conversation_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await on_error(
                    SoulSyncApiError("Error checking import status", operation="get_import_status")
                )
                return

            if terminal:
                logger.info(
                    "Import reached terminal status",
                    conversation_id=conversation_id,
                    ticks=self.ticks,
                )
                return
