"""
router.py
---------
Purpose:
    HTTP endpoints that drive a chat import workflow step by step and let
    relationship views pick up refresh signals.

Architecture:
    - API layer: session header, validation, 404s
    - Service layer: ImportWorkflow holds all state and never raises for
      user mistakes; they show up in the returned `error` field

Usage:
    1. POST /imports/{relationship_id}/workflow        - start (replaces any previous)
    2. POST /imports/{relationship_id}/workflow/source - choose source + phone
    3. POST /imports/{relationship_id}/workflow/next   - advance / Start Import
    4. POST /imports/{relationship_id}/workflow/file   - upload the chat export
    5. GET  /imports/{relationship_id}/workflow        - poll the state
    6. POST /imports/{relationship_id}/workflow/finish - leave to the profile
    7. GET  /relationships/{relationship_id}/refresh-signal?wait=N - pick up (or wait for) a refresh
"""

import asyncio
from contextlib import suppress

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from soulsync.auth.session import session_dependency
from soulsync.features.chat_import.domain.models import ChatFile
from soulsync.features.chat_import.services.registry import workflow_registry
from soulsync.features.chat_import.services.workflow import ImportWorkflow
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.models.api.import_request import SourceSelectionRequest
from soulsync.models.api.import_response import (
    ImportWorkflowResponse,
    NavigationResponse,
    RefreshSignalResponse,
)
from soulsync.services.refresh_signals import RefreshSignals

MAX_REFRESH_WAIT_SECONDS = 30

router = APIRouter(tags=["chat-import"])
logger = get_logger(__name__)


def _get_workflow(session_id: str, relationship_id: str) -> ImportWorkflow:
    workflow = workflow_registry.get(session_id, relationship_id)
    if workflow is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No import workflow for relationship"
        )
    return workflow


def _state(workflow: ImportWorkflow) -> ImportWorkflowResponse:
    return ImportWorkflowResponse(**workflow.snapshot())


@router.post(
    "/imports/{relationship_id}/workflow",
    response_model=ImportWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_workflow(relationship_id: str, session_id: str = Depends(session_dependency)):
    workflow = await workflow_registry.create(session_id, relationship_id)
    logger.info("Import workflow created", relationship_id=relationship_id, session_id=session_id)
    return _state(workflow)


@router.get("/imports/{relationship_id}/workflow", response_model=ImportWorkflowResponse)
async def get_workflow(relationship_id: str, session_id: str = Depends(session_dependency)):
    return _state(_get_workflow(session_id, relationship_id))


@router.post("/imports/{relationship_id}/workflow/source", response_model=ImportWorkflowResponse)
async def select_source(
    relationship_id: str,
    request: SourceSelectionRequest,
    session_id: str = Depends(session_dependency),
):
    workflow = _get_workflow(session_id, relationship_id)
    workflow.select_source(request.source, request.contact_phone)
    return _state(workflow)


@router.post("/imports/{relationship_id}/workflow/file", response_model=ImportWorkflowResponse)
async def upload_file(
    relationship_id: str,
    chat_file: UploadFile = File(...),
    session_id: str = Depends(session_dependency),
):
    workflow = _get_workflow(session_id, relationship_id)
    content = await chat_file.read()
    workflow.select_file(
        ChatFile(
            filename=chat_file.filename or "chat.txt",
            content=content,
            content_type=chat_file.content_type or "application/octet-stream",
        )
    )
    return _state(workflow)


@router.post("/imports/{relationship_id}/workflow/next", response_model=ImportWorkflowResponse)
async def next_step(relationship_id: str, session_id: str = Depends(session_dependency)):
    workflow = _get_workflow(session_id, relationship_id)
    await workflow.next()
    return _state(workflow)


@router.post("/imports/{relationship_id}/workflow/back", response_model=NavigationResponse)
async def previous_step(relationship_id: str, session_id: str = Depends(session_dependency)):
    workflow = _get_workflow(session_id, relationship_id)
    redirect = workflow.back()
    return NavigationResponse(redirect=redirect, workflow=_state(workflow))


@router.post(
    "/imports/{relationship_id}/workflow/analysis/refresh",
    response_model=ImportWorkflowResponse,
)
async def refresh_analysis(relationship_id: str, session_id: str = Depends(session_dependency)):
    workflow = _get_workflow(session_id, relationship_id)
    await workflow.refresh_relationship_analysis()
    return _state(workflow)


@router.post("/imports/{relationship_id}/workflow/finish", response_model=NavigationResponse)
async def go_to_relationship(relationship_id: str, session_id: str = Depends(session_dependency)):
    workflow = _get_workflow(session_id, relationship_id)
    redirect = await workflow.go_to_relationship()
    return NavigationResponse(redirect=redirect, workflow=_state(workflow))


@router.post(
    "/imports/{relationship_id}/workflow/conversation", response_model=NavigationResponse
)
async def go_to_conversation(relationship_id: str, session_id: str = Depends(session_dependency)):
    workflow = _get_workflow(session_id, relationship_id)
    redirect = await workflow.go_to_conversation()
    return NavigationResponse(redirect=redirect, workflow=_state(workflow))


@router.delete("/imports/{relationship_id}/workflow", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(relationship_id: str, session_id: str = Depends(session_dependency)):
    if not await workflow_registry.remove(session_id, relationship_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No import workflow for relationship"
        )


@router.get(
    "/relationships/{relationship_id}/refresh-signal", response_model=RefreshSignalResponse
)
async def consume_refresh_signal(
    relationship_id: str,
    wait: float = Query(default=0, ge=0, le=MAX_REFRESH_WAIT_SECONDS),
    session_id: str = Depends(session_dependency),
):
    """
    Read-then-clear the pending refresh flags for a relationship view.

    With `wait`, a view that finds nothing pending stays subscribed for up to
    that many seconds and answers as soon as an import completes.
    """
    signals = RefreshSignals()
    # Subscribe before reading the flags so a completion in between is not lost
    async with signals.bus.subscribe(relationship_id) as events:
        flags = await signals.consume(relationship_id, session_id=session_id)
        if not flags["refresh"] and wait:
            with suppress(TimeoutError):
                await asyncio.wait_for(events.get(), timeout=wait)
            flags = await signals.consume(relationship_id, session_id=session_id)

    if flags["refresh"]:
        logger.info("Import detected, relationship view should refresh", relationship_id=relationship_id)
    return RefreshSignalResponse(relationship_id=relationship_id, **flags)
