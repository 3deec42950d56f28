"""
Import workflow response models.
Used by the chat import router for output formatting.
"""

from typing import Any

from pydantic import BaseModel, Field


class RelationshipAnalysisResponse(BaseModel):
    """Progress of the relationship analysis that follows an import."""

    status: str = Field(..., description="idle, analyzing, completed, timeout or error")
    progress: int = Field(default=0, description="0-100")
    error: str | None = Field(None, description="User-facing error")
    refreshing: bool = Field(default=False, description="Whether a manual refresh is running")


class ImportWorkflowResponse(BaseModel):
    """Full state of an import workflow."""

    relationship_id: str = Field(..., description="Relationship the chat is imported into")
    active_step: int = Field(..., description="0 select source, 1 upload, 2 process, 3 review")
    step_label: str = Field(..., description="Label of the active step")
    steps: list[str] = Field(..., description="All step labels in order")
    chat_source: str = Field(..., description="Selected chat source")
    contact_phone: str = Field(default="", description="Contact phone number, if given")
    filename: str | None = Field(None, description="Selected chat export")
    file_size: int = Field(default=0, description="Size of the selected export in bytes")
    conversation_id: str | None = Field(None, description="Conversation created by the import")
    status: str = Field(..., description="none, processing, completed, analyzed or failed")
    progress: int = Field(..., description="Displayed progress 0-100")
    phase_message: str = Field(..., description="Progress phase text")
    estimated_time_remaining: str = Field(..., description="Human-readable time estimate")
    message_count: int = Field(default=0, description="Messages found in the export")
    stalled: bool = Field(default=False, description="Import is running unusually long")
    loading: bool = Field(default=False, description="Upload in progress")
    success: bool = Field(default=False, description="Import finished successfully")
    error: str = Field(default="", description="User-facing error message")
    analysis: dict[str, Any] | None = Field(None, description="Normalized import analysis")
    topics_processed: bool = Field(default=False, description="Topics and metrics propagated")
    relationship_analysis: RelationshipAnalysisResponse
    can_go_back: bool = Field(..., description="Whether Back is enabled")
    can_start_import: bool = Field(..., description="Whether Start Import is enabled")


class NavigationResponse(BaseModel):
    """Result of a navigation action (Back, finish, open conversation)."""

    redirect: str | None = Field(None, description="Path the client should navigate to")
    workflow: ImportWorkflowResponse


class RefreshSignalResponse(BaseModel):
    """Whether a relationship view should reload its data."""

    relationship_id: str
    refresh: bool = Field(..., description="True when any refresh signal was pending")
    relationship_updated: bool = Field(..., description="Durable per-relationship flag was set")
    session_refresh: bool = Field(..., description="One-shot session flag was set")
