import asyncio

import pytest

from soulsync.features.chat_import.domain.models import (
    STEP_PROCESS_IMPORT,
    STEP_REVIEW_ANALYSIS,
    STEP_SELECT_SOURCE,
    STEP_UPLOAD_FILE,
    ChatFile,
)
from soulsync.features.chat_import.services.workflow import (
    IMPORT_FAILED_ERROR,
    IMPORT_TIMEOUT_ERROR,
    MISSING_CONVERSATION_ERROR,
    SELECT_FILE_ERROR,
    SELECT_SOURCE_ERROR,
    UNSUPPORTED_FILE_ERROR,
    ImportWorkflow,
    WorkflowError,
)
from soulsync.services.soulsync_api import SoulSyncApiError

from tests.conftest import FakeSoulSyncApi

CHAT_FILE = ChatFile("WhatsApp Chat with Sam.txt", b"[1/2/24, 9:00] Sam: hi\n" * 100)


async def _advance_to_import(workflow):
    assert workflow.select_source("whatsapp")
    assert await workflow.next()
    assert workflow.select_file(CHAT_FILE)
    assert await workflow.next()
    assert workflow.active_step == STEP_PROCESS_IMPORT


def _spy_progress(workflow):
    seen = []
    original = workflow.handle_status

    async def spy(payload):
        terminal = await original(payload)
        seen.append(workflow.progress)
        return terminal

    workflow.handle_status = spy
    return seen


@pytest.mark.asyncio
async def test_happy_path_reaches_review_with_single_analysis_fetch(build_workflow, fake_api, fake_redis):
    fake_api.statuses = [
        {"status": "processing", "progress": 0},
        {"status": "processing", "progress": 0},
        {"status": "processing", "progress": 0},
        {"status": "completed", "progress": 100},
    ]
    workflow = build_workflow()
    await _advance_to_import(workflow)
    seen = _spy_progress(workflow)

    assert await workflow.next()
    await workflow.wait()

    assert seen == [15, 30, 45, 100]
    assert workflow.active_step == STEP_REVIEW_ANALYSIS
    assert workflow.success
    assert workflow.error == ""
    assert fake_api.count("import_chat") == 1
    assert fake_api.count("get_import_status") == 4
    assert fake_api.count("get_import_analysis") == 1
    assert fake_api.count("recalculate_metrics") == 1
    assert workflow.topics_processed
    assert workflow.analysis["messageCount"] == 120
    assert workflow.monitor.state.status == "completed"
    assert "relationship_data_updated:rel-1" in fake_redis.store
    assert fake_redis.store["refresh_relationship_data:session-1"] == "true"

    await workflow.close()


@pytest.mark.asyncio
async def test_upload_sends_source_and_contact_phone(build_workflow, fake_api):
    workflow = build_workflow()
    workflow.select_source("imessage", contact_phone=" +15551234567 ")
    await workflow.next()
    workflow.select_file(CHAT_FILE)
    await workflow.next()

    await workflow.next()
    await workflow.wait()

    name, args = fake_api.calls[0]
    assert name == "import_chat"
    assert args == ("rel-1", CHAT_FILE.filename, "imessage", "+15551234567")
    assert workflow.job.message_count == 120


@pytest.mark.asyncio
async def test_server_failure_resets_progress_and_allows_retry(build_workflow, fake_api):
    fake_api.statuses = [
        {"status": "processing", "progress": 0},
        {"status": "failed"},
    ]
    workflow = build_workflow()
    await _advance_to_import(workflow)

    await workflow.next()
    await workflow.wait()

    assert workflow.error == IMPORT_FAILED_ERROR
    assert workflow.progress == 0
    assert workflow.active_step == STEP_PROCESS_IMPORT
    assert workflow.can_start_import
    assert fake_api.count("get_import_analysis") == 0

    fake_api.statuses = [{"status": "completed", "progress": 100}]
    assert await workflow.next()
    await workflow.wait()

    assert workflow.active_step == STEP_REVIEW_ANALYSIS
    assert fake_api.count("import_chat") == 2
    assert fake_api.count("get_import_analysis") == 1


@pytest.mark.asyncio
async def test_upload_error_is_shown(build_workflow, fake_api):
    fake_api.import_error = SoulSyncApiError("File too large", status_code=413)
    workflow = build_workflow()
    await _advance_to_import(workflow)

    assert not await workflow.next()

    assert workflow.error == "File too large"
    assert not workflow.loading
    assert workflow.conversation_id is None
    assert fake_api.count("get_import_status") == 0


@pytest.mark.asyncio
async def test_missing_conversation_id_does_not_poll(build_workflow, fake_api):
    fake_api.import_response = {"success": True}
    workflow = build_workflow()
    await _advance_to_import(workflow)

    assert not await workflow.next()
    assert workflow.error
    assert not workflow.poller.is_running


@pytest.mark.asyncio
async def test_poll_error_stops_polling(build_workflow, fake_api):
    fake_api.status_error = SoulSyncApiError("Error checking import status", status_code=500)
    workflow = build_workflow()
    await _advance_to_import(workflow)

    await workflow.next()
    await workflow.wait()

    assert workflow.error == "Error checking import status"
    assert fake_api.count("get_import_status") == 1
    assert workflow.can_go_back
    assert workflow.can_start_import

    fake_api.status_error = None
    assert await workflow.next()
    await workflow.wait()

    assert workflow.active_step == STEP_REVIEW_ANALYSIS
    assert fake_api.count("import_chat") == 2


@pytest.mark.asyncio
async def test_poll_deadline_sets_timeout_error(fake_api, build_workflow):
    fake_api.statuses = [{"status": "processing", "progress": 0}]
    now = {"t": 0.0}

    def clock():
        now["t"] += 1
        return now["t"]

    workflow = build_workflow(stall_after=2, timeout=4, clock=clock)
    await _advance_to_import(workflow)

    await workflow.next()
    await workflow.wait()

    assert workflow.error == IMPORT_TIMEOUT_ERROR
    assert workflow.job.stalled
    assert workflow.active_step == STEP_PROCESS_IMPORT
    assert workflow.can_start_import
    assert workflow.back() is None
    assert workflow.active_step == STEP_UPLOAD_FILE


@pytest.mark.asyncio
async def test_step_guards(build_workflow):
    workflow = build_workflow()

    assert not workflow.select_source("")
    assert workflow.error == SELECT_SOURCE_ERROR
    assert not workflow.select_source("telegram")
    assert workflow.active_step == STEP_SELECT_SOURCE

    assert workflow.select_source("whatsapp")
    await workflow.next()
    assert workflow.active_step == STEP_UPLOAD_FILE

    assert not await workflow.next()
    assert workflow.error == SELECT_FILE_ERROR

    assert not workflow.select_file(ChatFile("photo.png", b"png"))
    assert workflow.error == UNSUPPORTED_FILE_ERROR
    assert workflow.active_step == STEP_UPLOAD_FILE


@pytest.mark.asyncio
async def test_back_navigation(build_workflow):
    workflow = build_workflow()

    assert workflow.back() == "/relationships/rel-1"

    workflow.select_source("whatsapp")
    await workflow.next()
    assert workflow.back() is None
    assert workflow.active_step == STEP_SELECT_SOURCE


@pytest.mark.asyncio
async def test_back_is_blocked_while_processing(build_workflow, fake_api):
    fake_api.statuses = [{"status": "processing", "progress": 0}]
    workflow = build_workflow(interval=0.01)
    await _advance_to_import(workflow)

    await workflow.next()
    await asyncio.sleep(0.05)

    assert not workflow.can_go_back
    assert workflow.back() is None
    assert workflow.active_step == STEP_PROCESS_IMPORT

    await workflow.close()


@pytest.mark.asyncio
async def test_start_import_ignored_while_processing(build_workflow, fake_api):
    fake_api.statuses = [{"status": "processing", "progress": 0}]
    workflow = build_workflow(interval=0.01)
    await _advance_to_import(workflow)

    assert await workflow.next()
    assert not await workflow.next()
    assert fake_api.count("import_chat") == 1

    await workflow.close()


@pytest.mark.asyncio
async def test_close_stops_polling(build_workflow, fake_api):
    fake_api.statuses = [{"status": "processing", "progress": 0}]
    workflow = build_workflow(interval=0.01)
    await _advance_to_import(workflow)
    await workflow.next()
    await asyncio.sleep(0.03)

    await workflow.close()
    polled = fake_api.count("get_import_status")
    await asyncio.sleep(0.03)

    assert not workflow.poller.is_running
    assert fake_api.count("get_import_status") == polled


@pytest.mark.asyncio
async def test_close_releases_owned_client():
    api = FakeSoulSyncApi()
    workflow = ImportWorkflow("rel-1", api, owns_api=True)

    await workflow.close()

    assert api.closed


@pytest.mark.asyncio
async def test_go_to_relationship_recalculates_and_busts_cache(build_workflow, fake_api):
    workflow = build_workflow()

    path = await workflow.go_to_relationship()

    assert path.startswith("/relationships/rel-1?refresh=")
    assert fake_api.names() == ["recalculate_metrics"]


@pytest.mark.asyncio
async def test_go_to_conversation_requires_conversation(build_workflow, fake_api):
    workflow = build_workflow()
    assert await workflow.go_to_conversation() is None
    assert workflow.error == MISSING_CONVERSATION_ERROR

    await _advance_to_import(workflow)
    await workflow.next()
    await workflow.wait()

    assert await workflow.go_to_conversation() == "/conversations/conv-1"


def test_relationship_id_is_required(fake_api):
    with pytest.raises(WorkflowError):
        ImportWorkflow("", fake_api)


@pytest.mark.asyncio
async def test_snapshot_is_serializable_state(build_workflow):
    workflow = build_workflow()

    snapshot = workflow.snapshot()

    assert snapshot["active_step"] == STEP_SELECT_SOURCE
    assert snapshot["step_label"] == "Select Source"
    assert snapshot["status"] == "none"
    assert snapshot["analysis"] is None
    assert snapshot["can_go_back"] is True
