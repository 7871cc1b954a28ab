"""VectorPoint model: metadata stored alongside each document chunk vector."""

from pydantic import BaseModel


class VectorPoint(BaseModel):
    """Payload stored alongside each chunk vector in the RAG backend.

    Access is encoded by three fields that the retrieval filter matches on:
    ``access`` ("private", "public" or "roles"), ``is_public`` and ``roles``.
    Private chunks are scoped by ``user_id``; shared chunks (public and roles)
    carry ``version`` and ``is_latest`` so that only one version per source is
    served by default.

    Attributes:
        source:      Original filename; identifies the document.
        chunk_index: Zero-based position of this chunk within the document.
        text:        Raw text content of this chunk.
        char_start:  Offset of the first character in the extracted text.
        char_end:    Offset after the last character (exclusive).
        line_from:   First line of the chunk (1-based).
        line_to:     Last line of the chunk (1-based, inclusive).
        access:      "private", "public" or "roles".
        user_id:     Owner for private chunks, uploader for shared ones.
        is_public:   True only for public chunks.
        roles:       Role names allowed to read a roles chunk; empty otherwise.
        version:     Shared document version, starting at 1; None for private chunks.
        is_latest:   True for chunks of the newest shared version; False for private chunks.
        created:     ISO-8601 upload timestamp.
    """

    source: str
    chunk_index: int
    text: str

    char_start: int
    char_end: int
    line_from: int
    line_to: int

    access: str
    user_id: str
    is_public: bool = False
    roles: list[str] = []

    version: int | None = None
    is_latest: bool = False

    created: str | None = None
