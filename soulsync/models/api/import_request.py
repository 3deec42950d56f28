# soulsync/models/api/import_request.py
from pydantic import BaseModel, ConfigDict, Field


class SourceSelectionRequest(BaseModel):
    """Request body for choosing the chat export source."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., min_length=1, description="Chat source (whatsapp or imessage)")
    contact_phone: str | None = Field(
        None,
        alias="contactPhone",
        max_length=32,
        description="Contact's phone number, helps tell the contact's messages apart",
    )
