from enum import Enum

from pydantic import BaseModel

from shared.models.access import AccessLevel


class TextChunk(BaseModel):
    """A window of extracted text with its position in the source.

    ``char_end`` is exclusive, ``line_from``/``line_to`` are 1-based and inclusive.
    """

    index: int
    text: str
    char_start: int
    char_end: int
    line_from: int
    line_to: int


class IngestStatus(str, Enum):
    INDEXED = "indexed"
    PARTIAL = "partial"
    FAILED = "failed"


class IngestionResult(BaseModel):
    status: IngestStatus
    source: str
    access: AccessLevel
    version: int | None = None
    chunks_total: int = 0
    chunks_indexed: int = 0
    failed_batches: list[int] = []
    stale_flags: int = 0
    message: str = ""
