from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.access.PausedDocumentRegistry import DocumentStatus


class CamelModel(BaseModel):
    """Accepts both camelCase (web client) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(CamelModel):
    query: str
    conversation_id: str | None = None
    source: str | None = None
    version: str | int | None = None
    persona: str | None = None


class DeleteDocumentRequest(CamelModel):
    source: str = Field(..., min_length=1)
    version: int | None = Field(default=None, ge=1)


class DocumentStatusRequest(CamelModel):
    source: str = Field(..., min_length=1)
    status: DocumentStatus


class ReconcileRequest(CamelModel):
    source: str | None = None


class DeletePrivateDocumentRequest(CamelModel):
    source: str = Field(..., min_length=1)


class DeleteConversationRequest(CamelModel):
    conversation_id: str = Field(..., min_length=1)


class FeedbackRequest(CamelModel):
    query: str
    response: str
    feedback: str = Field(..., pattern="^(thumbs_up|thumbs_down)$")
    # source names, or source objects as returned in X-Sources
    sources: list[str | dict] = []
