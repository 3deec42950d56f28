"""
Refresh signals for relationship data.

When an import finishes, views that show the relationship (the profile page)
must reload it. Two mechanisms cover that:

- ``RefreshSignalBus``: in-process publish/subscribe of ``ImportCompleted``
  events for listeners that are alive when the import finishes.
- Redis flags for consumers that show up later: a durable flag keyed by
  relationship id and a one-shot flag keyed by client session. Consumption is
  a single GETDEL so a flag triggers at most one refresh.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime

from soulsync.config import settings
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.redis_client import redis_client

logger = get_logger(__name__)

RELATIONSHIP_FLAG_KEY = "relationship_data_updated:{relationship_id}"
SESSION_FLAG_KEY = "refresh_relationship_data:{session_id}"


@dataclass(slots=True, frozen=True)
class ImportCompleted:
    """Published once a relationship's derived data changed after an import."""

    relationship_id: str
    conversation_id: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class RefreshSignalBus:
    """Fan-out of ImportCompleted events to subscribers keyed by relationship id."""

    def __init__(self):
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    @asynccontextmanager
    async def subscribe(self, relationship_id: str) -> AsyncIterator[asyncio.Queue]:
        """Yield a queue receiving every event for ``relationship_id`` until exit."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[relationship_id].add(queue)
        try:
            yield queue
        finally:
            self._subscribers[relationship_id].discard(queue)
            if not self._subscribers[relationship_id]:
                del self._subscribers[relationship_id]

    def publish(self, event: ImportCompleted) -> int:
        """Deliver to current subscribers; returns how many received it."""
        queues = list(self._subscribers.get(event.relationship_id, ()))
        for queue in queues:
            queue.put_nowait(event)
        logger.debug(
            "Refresh signal published",
            relationship_id=event.relationship_id,
            subscribers=len(queues),
        )
        return len(queues)

    def subscriber_count(self, relationship_id: str) -> int:
        return len(self._subscribers.get(relationship_id, ()))


class RefreshFlagStore:
    """Redis flags read by views that were not subscribed when the import finished."""

    def __init__(self, store=None):
        self._store = store or redis_client

    async def mark_relationship_updated(self, relationship_id: str) -> bool:
        return await self._store.set_with_ttl(
            RELATIONSHIP_FLAG_KEY.format(relationship_id=relationship_id),
            datetime.now(UTC).isoformat(),
            settings.REFRESH_FLAG_TTL_SECONDS,
        )

    async def consume_relationship_updated(self, relationship_id: str) -> bool:
        value = await self._store.getdel(
            RELATIONSHIP_FLAG_KEY.format(relationship_id=relationship_id)
        )
        return value is not None

    async def mark_session_refresh(self, session_id: str) -> bool:
        return await self._store.set_with_ttl(
            SESSION_FLAG_KEY.format(session_id=session_id),
            "true",
            settings.SESSION_FLAG_TTL_SECONDS,
        )

    async def consume_session_refresh(self, session_id: str) -> bool:
        value = await self._store.getdel(SESSION_FLAG_KEY.format(session_id=session_id))
        return value == "true"


class RefreshSignals:
    """Raises and consumes every refresh signal for a relationship."""

    def __init__(self, bus: RefreshSignalBus | None = None, flags: RefreshFlagStore | None = None):
        self.bus = bus or refresh_signal_bus
        self.flags = flags or RefreshFlagStore()

    async def notify_import_completed(
        self,
        relationship_id: str,
        session_id: str | None = None,
        conversation_id: str | None = None,
    ) -> None:
        await self.flags.mark_relationship_updated(relationship_id)
        if session_id:
            await self.flags.mark_session_refresh(session_id)
        self.bus.publish(ImportCompleted(relationship_id, conversation_id))
        logger.info(
            "Relationship refresh signalled",
            relationship_id=relationship_id,
            conversation_id=conversation_id,
        )

    async def consume(self, relationship_id: str, session_id: str | None = None) -> dict:
        """Read-then-clear both flags. Returns which ones were set."""
        relationship_flag = await self.flags.consume_relationship_updated(relationship_id)
        session_flag = False
        if session_id:
            session_flag = await self.flags.consume_session_refresh(session_id)
        return {
            "refresh": relationship_flag or session_flag,
            "relationship_updated": relationship_flag,
            "session_refresh": session_flag,
        }


# Process-wide bus shared by every workflow
refresh_signal_bus = RefreshSignalBus()
