import pytest

from soulsync.features.chat_import.services.analysis_monitor import RelationshipAnalysisMonitor
from soulsync.features.chat_import.services.status_poller import StatusPoller
from soulsync.features.chat_import.services.workflow import ImportWorkflow
from soulsync.services.refresh_signals import RefreshFlagStore, RefreshSignalBus, RefreshSignals
from soulsync.services.soulsync_api import SoulSyncApiError


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def getdel(self, key: str) -> str | None:
        return self.store.pop(key, None)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


ANALYZED_PROFILE = {
    "metrics": {"depthScore": 72, "emotionalVolatility": 0.3},
    "topicDistribution": [{"name": "Travel", "percentage": 40}],
}


class FakeSoulSyncApi:
    """Stands in for SoulSyncApiClient; records every call in order."""

    def __init__(self, statuses=None, analysis=None):
        self.calls: list[tuple[str, tuple]] = []
        self.statuses = list(statuses or [{"status": "completed", "progress": 100}])
        self.analysis = analysis if analysis is not None else {
            "topSenders": {"You": 60, "Sam": 60},
            "topTopics": [
                {"name": "Travel", "percentage": 40, "count": 48},
                {"name": "Work", "percentage": 25, "count": 30},
            ],
            "messageCount": 120,
            "sentimentScore": 0.6,
            "sentimentLabel": "positive",
        }
        self.import_response = {"conversationId": "conv-1", "messageCount": 120}
        self.profile = ANALYZED_PROFILE
        self.conversations = False
        self.import_error: SoulSyncApiError | None = None
        self.status_error: SoulSyncApiError | None = None
        self.analysis_error: SoulSyncApiError | None = None
        self.topic_error: Exception | None = None
        self.recalc_error: SoulSyncApiError | None = None
        self.closed = False

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)

    async def import_chat(self, relationship_id, filename, content, source, contact_phone=None,
                          content_type="application/octet-stream"):
        self.calls.append(("import_chat", (relationship_id, filename, source, contact_phone)))
        if self.import_error:
            raise self.import_error
        return self.import_response

    async def get_import_status(self, conversation_id):
        self.calls.append(("get_import_status", (conversation_id,)))
        if self.status_error:
            raise self.status_error
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def get_import_analysis(self, conversation_id):
        self.calls.append(("get_import_analysis", (conversation_id,)))
        if self.analysis_error:
            raise self.analysis_error
        return self.analysis

    async def has_conversations(self, relationship_id):
        self.calls.append(("has_conversations", (relationship_id,)))
        return self.conversations

    async def analyze_topics(self, relationship_id):
        self.calls.append(("analyze_topics", (relationship_id,)))
        if self.topic_error:
            raise self.topic_error
        return {}

    async def update_topic_distribution(self, relationship_id, topics):
        self.calls.append(("update_topic_distribution", (relationship_id, topics)))
        if self.topic_error:
            raise self.topic_error
        return {}

    async def recalculate_metrics(self, relationship_id):
        self.calls.append(("recalculate_metrics", (relationship_id,)))
        if self.recalc_error:
            raise self.recalc_error
        return {"success": True}

    async def get_detailed_profile(self, relationship_id):
        self.calls.append(("get_detailed_profile", (relationship_id,)))
        return self.profile

    async def analyze_relationship(self, relationship_id):
        self.calls.append(("analyze_relationship", (relationship_id,)))
        return {}

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_api():
    return FakeSoulSyncApi()


@pytest.fixture
def signal_bus():
    return RefreshSignalBus()


@pytest.fixture
def signals(fake_redis, signal_bus):
    return RefreshSignals(bus=signal_bus, flags=RefreshFlagStore(fake_redis))


@pytest.fixture
def build_workflow(fake_api, signals):
    """Workflow wired to the fake API with zero-delay polling."""

    def _build(api=None, relationship_id="rel-1", session_id="session-1", **poller_kwargs):
        api = api or fake_api
        poller_kwargs.setdefault("interval", 0)
        poller_kwargs.setdefault("stall_after", 0)
        poller_kwargs.setdefault("timeout", 0)
        return ImportWorkflow(
            relationship_id,
            api,
            session_id=session_id,
            signals=signals,
            poller=StatusPoller(api, **poller_kwargs),
            monitor=RelationshipAnalysisMonitor(api, relationship_id, interval=0, max_attempts=3),
        )

    return _build
