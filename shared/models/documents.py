from pydantic import BaseModel

from shared.access.PausedDocumentRegistry import DocumentStatus


class DocumentVersion(BaseModel):
    version: int
    status: DocumentStatus
    is_latest: bool
    chunk_count: int


class SharedDocument(BaseModel):
    source: str
    versions: list[DocumentVersion]


class PrivateDocument(BaseModel):
    source: str
    chunk_count: int
    created: str | None = None


class ReconcileReport(BaseModel):
    sources_checked: int = 0
    flags_set: int = 0
    flags_cleared: int = 0
    failures: int = 0
