from pydantic import BaseModel

from shared.access.PausedDocumentRegistry import DocumentStatus


class MessageResponse(BaseModel):
    message: str


class DeleteResponse(BaseModel):
    message: str
    deleted: int


class DocumentStatusResponse(BaseModel):
    message: str
    source: str
    status: DocumentStatus


class FeedbackResponse(BaseModel):
    message: str
    id: str


class AccountDeletedResponse(BaseModel):
    message: str
    conversations_deleted: int
    documents_deleted: int
