import asyncio

import pytest

from soulsync.config import settings
from soulsync.features.chat_import.domain.models import ChatFile
from soulsync.features.chat_import.services.registry import ImportWorkflowRegistry

from tests.conftest import FakeSoulSyncApi


@pytest.fixture
def registry(monkeypatch, signals):
    monkeypatch.setattr(settings, "IMPORT_POLL_INTERVAL_SECONDS", 0.01)
    apis: list[FakeSoulSyncApi] = []

    def api_factory(session_id):
        api = FakeSoulSyncApi(statuses=[{"status": "processing", "progress": 0}])
        apis.append(api)
        return api

    registry = ImportWorkflowRegistry(api_factory=api_factory, signals=signals)
    registry.apis = apis
    return registry


async def _start_polling(workflow):
    workflow.select_source("whatsapp")
    await workflow.next()
    workflow.select_file(ChatFile("chat.txt", b"hello"))
    await workflow.next()
    assert await workflow.next()
    assert workflow.poller.is_running


@pytest.mark.asyncio
async def test_create_replaces_and_tears_down_previous_workflow(registry):
    old = await registry.create("session-1", "rel-1")
    await _start_polling(old)

    new = await registry.create("session-1", "rel-1")

    assert new is not old
    assert registry.get("session-1", "rel-1") is new
    assert len(registry) == 1
    assert not old.poller.is_running
    assert registry.apis[0].closed
    assert not registry.apis[1].closed

    polled = registry.apis[0].count("get_import_status")
    await asyncio.sleep(0.03)
    assert registry.apis[0].count("get_import_status") == polled

    await registry.close_all()


@pytest.mark.asyncio
async def test_workflows_are_scoped_by_session_and_relationship(registry):
    first = await registry.create("session-1", "rel-1")
    other_session = await registry.create("session-2", "rel-1")
    other_relationship = await registry.create("session-1", "rel-2")

    assert len(registry) == 3
    assert registry.get("session-1", "rel-1") is first
    assert registry.get("session-2", "rel-1") is other_session
    assert registry.get("session-1", "rel-2") is other_relationship

    await registry.close_all()


@pytest.mark.asyncio
async def test_remove_closes_workflow(registry):
    workflow = await registry.create("session-1", "rel-1")
    await _start_polling(workflow)

    assert await registry.remove("session-1", "rel-1") is True

    assert registry.get("session-1", "rel-1") is None
    assert not workflow.poller.is_running
    assert registry.apis[0].closed
    assert await registry.remove("session-1", "rel-1") is False


@pytest.mark.asyncio
async def test_close_all_stops_every_workflow(registry):
    first = await registry.create("session-1", "rel-1")
    second = await registry.create("session-2", "rel-2")
    await _start_polling(first)
    await _start_polling(second)

    await registry.close_all()

    assert len(registry) == 0
    assert not first.poller.is_running
    assert not second.poller.is_running
    assert all(api.closed for api in registry.apis)
