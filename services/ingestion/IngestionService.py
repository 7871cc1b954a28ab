"""Document ingestion pipeline.

Extracts text from an upload, splits it into chunks, embeds the chunks and
upserts them with an access payload into the RAG backend. Shared uploads
(public or role restricted, admin only) are versioned per source:

    QUERYING     find the versions already stored for the source
    ROLLING_OVER clear is_latest on the chunks of the current latest version
    WRITING      embed and upsert the new version in batches
    DONE         report indexed / partial / failed

Failures before WRITING abort the upload. A failing batch during WRITING is
logged and skipped; the remaining batches are still written and the result
is reported as partial.
"""

import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from shared.access.AccessPolicyEngine import AccessPolicyEngine
from shared.cache.EmbeddingCache import EmbeddingCache
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorPoint
from shared.exceptions.errors import CompassError, ExtractionFailed, InvalidInput
from shared.helper.HelperConfig import HelperConfig
from shared.helper.KeyedLock import KeyedLock
from shared.ingestion.ContentChunker import ContentChunker
from shared.ingestion.ContentExtractor import SUPPORTED_MIME_TYPES, ContentExtractor
from shared.models.access import AccessLevel, AccessRequest, Principal
from shared.models.ingestion import IngestionResult, IngestStatus, TextChunk

MAX_FILE_BYTES = 15 * 1024 * 1024
UPSERT_BATCH_SIZE = 100


class IngestionState(str, Enum):
    QUERYING = "querying"
    ROLLING_OVER = "rolling_over"
    WRITING = "writing"
    DONE = "done"


def _make_point_id(scope: str, source: str, version: int | None, chunk_index: int) -> str:
    """Deterministic UUID5 point id, so re-ingesting the same chunk overwrites instead of duplicating.

    Args:
        scope (str): "shared" or "private:<user id>".
        source (str): Document filename.
        version (int | None): Shared document version, None for private uploads.
        chunk_index (int): Zero-based chunk index.
    """
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{scope}:{source}:{version}:{chunk_index}"))


class IngestionService:
    """Runs uploads through extraction, chunking, embedding and versioned upsert."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        embedding_cache: EmbeddingCache,
        extractor: ContentExtractor | None = None,
        chunker: ContentChunker | None = None,
        policy: AccessPolicyEngine | None = None,
        source_locks: KeyedLock | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._embedding_cache = embedding_cache
        self._extractor = extractor or ContentExtractor(self.logging)
        self._chunker = chunker or ContentChunker(
            chunk_size=int(helper_config.get_number_val("INGEST_CHUNK_SIZE", default=1000)),
            chunk_overlap=int(helper_config.get_number_val("INGEST_CHUNK_OVERLAP", default=200)),
        )
        self._policy = policy or AccessPolicyEngine()
        self.max_file_bytes = int(helper_config.get_number_val("INGEST_MAX_FILE_BYTES", default=MAX_FILE_BYTES))
        self.upsert_batch_size = int(helper_config.get_number_val("INGEST_UPSERT_BATCH_SIZE", default=UPSERT_BATCH_SIZE))
        # shared with DocumentAdminService so reconciliation never interleaves with a rollover
        self._source_locks = source_locks if source_locks is not None else KeyedLock()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_upload(self, data: bytes, filename: str, mime_type: str, access: AccessRequest) -> str:
        """Check an upload before any processing.

        Returns:
            str: The normalised source name (the filename without directories).

        Raises:
            InvalidInput: On an unsupported type, empty or oversized file, or a role upload without roles.
        """
        source = os.path.basename((filename or "").replace("\\", "/")).strip()
        if not source:
            raise InvalidInput("A filename is required.")
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise InvalidInput("Invalid file type. Only PDF, TXT, and DOCX are allowed.")
        if not data:
            raise InvalidInput("The uploaded file is empty.")
        if len(data) > self.max_file_bytes:
            raise InvalidInput(f"File is too large. Maximum size is {self.max_file_bytes // (1024 * 1024)}MB.")
        if access.level == AccessLevel.ROLES and not access.roles:
            raise InvalidInput("At least one role is required for role-based access.")
        return source

    ##########################################
    ############### CORE #####################
    ##########################################

    async def do_ingest(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        principal: Principal,
        access: AccessRequest,
    ) -> IngestionResult:
        """Ingest one uploaded document.

        Non-admin principals, and admins choosing private access, produce an
        unversioned private copy that replaces any earlier private upload of
        the same source by that principal. Admin uploads with public or roles
        access produce the next shared version of the source.

        Raises:
            InvalidInput: See validate_upload().
            ExtractionFailed: If no text can be extracted.
            StoreUnavailable | StoreRejected: If the RAG backend fails before writing starts.
        """
        source = self.validate_upload(data, filename, mime_type, access)

        text = await self._extractor.extract(data, mime_type, source)
        chunks = self._chunker.split(text)
        if not chunks:
            raise ExtractionFailed(f"'{source}' produced no chunks")
        self.logging.info("Ingesting '%s' for user %s: %d chunk(s), access=%s.", source, principal.id, len(chunks), access.level.value)

        if not principal.is_admin or access.level == AccessLevel.PRIVATE:
            return await self._ingest_private(source, chunks, principal)
        return await self._ingest_shared(source, chunks, principal, access)

    async def _ingest_private(self, source: str, chunks: list[TextChunk], principal: Principal) -> IngestionResult:
        created = datetime.now(timezone.utc).isoformat()

        def build_point(chunk: TextChunk, vector: list[float]) -> dict:
            payload = VectorPoint(
                source=source,
                chunk_index=chunk.index,
                text=chunk.text,
                char_start=chunk.char_start,
                char_end=chunk.char_end,
                line_from=chunk.line_from,
                line_to=chunk.line_to,
                access=AccessLevel.PRIVATE.value,
                user_id=principal.id,
                created=created,
            )
            return {
                "id": _make_point_id(f"private:{principal.id}", source, None, chunk.index),
                "vector": vector,
                "payload": payload.model_dump(),
            }

        # point ids depend on the chunk index only, so the upsert overwrites the earlier copy in place
        async with self._source_locks.hold(f"private:{principal.id}:{source}"):
            indexed, failed_batches = await self._write(source, chunks, build_point)
            result = self._build_result(source, AccessLevel.PRIVATE, None, chunks, indexed, failed_batches, 0)
            if result.status == IngestStatus.INDEXED:
                await self._drop_private_tail(source, principal, len(chunks))
        return result

    async def _drop_private_tail(self, source: str, principal: Principal, chunk_count: int) -> None:
        """Delete chunks of an earlier, longer private copy that the new upload did not overwrite."""
        try:
            removed = await self._rag_client.do_delete_points_by_filter(
                self._policy.build_private_filter(principal.id, source, from_chunk_index=chunk_count)
            )
        except CompassError as exc:
            self.logging.error("Could not remove outdated chunks of private document '%s' of user %s: %s", source, principal.id, exc)
            return
        if removed:
            self.logging.info("Removed %d outdated chunk(s) of private document '%s' of user %s.", removed, source, principal.id)

    async def _ingest_shared(self, source: str, chunks: list[TextChunk], principal: Principal, access: AccessRequest) -> IngestionResult:
        async with self._source_locks.hold(source):
            self._log_state(source, IngestionState.QUERYING)
            version, latest_ids = await self._query_versions(source)

            self._log_state(source, IngestionState.ROLLING_OVER)
            stale_flags = await self._roll_over(source, latest_ids)

            self._log_state(source, IngestionState.WRITING)
            created = datetime.now(timezone.utc).isoformat()
            is_public = access.level == AccessLevel.PUBLIC
            roles = [] if is_public else [role.value for role in access.roles]

            def build_point(chunk: TextChunk, vector: list[float]) -> dict:
                payload = VectorPoint(
                    source=source,
                    chunk_index=chunk.index,
                    text=chunk.text,
                    char_start=chunk.char_start,
                    char_end=chunk.char_end,
                    line_from=chunk.line_from,
                    line_to=chunk.line_to,
                    access=access.level.value,
                    user_id=principal.id,
                    is_public=is_public,
                    roles=roles,
                    version=version,
                    is_latest=True,
                    created=created,
                )
                return {
                    "id": _make_point_id("shared", source, version, chunk.index),
                    "vector": vector,
                    "payload": payload.model_dump(),
                }

            indexed, failed_batches = await self._write(source, chunks, build_point)
            self._log_state(source, IngestionState.DONE)
        return self._build_result(source, access.level, version, chunks, indexed, failed_batches, stale_flags)

    ##########################################
    ############ STATE MACHINE ###############
    ##########################################

    def _log_state(self, source: str, state: IngestionState) -> None:
        self.logging.debug("Ingestion of '%s' entered state %s.", source, state.value)

    async def _query_versions(self, source: str) -> tuple[int, list[str]]:
        """Return the next version number and the ids of the chunks currently flagged latest.

        The next version follows the highest stored version, not only the
        latest-flagged one, so a version left unflagged by an earlier failed
        upload is never reused.
        """
        stored = await self._rag_client.do_scroll_all(
            filter=self._policy.build_shared_source_filter(source),
            with_payload=["version", "is_latest"],
            with_vector=False,
        )
        versions = [int(point.payload["version"]) for point in stored.points if point.payload.get("version") is not None]
        latest_ids = [point.id for point in stored.points if point.payload.get("is_latest")]
        next_version = max(versions) + 1 if versions else 1
        self.logging.info("Shared document '%s' will be stored as version %d.", source, next_version)
        return next_version, latest_ids

    async def _roll_over(self, source: str, latest_ids: list[str]) -> int:
        """Clear is_latest on each given point. Returns the number of points that could not be updated."""
        failed = 0
        for point_id in latest_ids:
            try:
                await self._rag_client.do_set_payload(point_id, {"is_latest": False})
            except CompassError as exc:
                failed += 1
                self.logging.error("Could not clear is_latest on point %s of '%s': %s", point_id, source, exc)
        if latest_ids:
            self.logging.info("Rolled over %d chunk(s) of '%s' (%d failed).", len(latest_ids) - failed, source, failed)
        return failed

    async def _write(
        self,
        source: str,
        chunks: list[TextChunk],
        build_point: Callable[[TextChunk, list[float]], dict],
    ) -> tuple[int, list[int]]:
        """Embed and upsert chunks in batches. Returns (chunks written, indexes of failed batches)."""
        indexed = 0
        failed_batches: list[int] = []
        for batch_index, batch_start in enumerate(range(0, len(chunks), self.upsert_batch_size)):
            batch = chunks[batch_start: batch_start + self.upsert_batch_size]
            try:
                vectors = await self._embedding_cache.get_or_compute_many([chunk.text for chunk in batch])
                points = [build_point(chunk, vector) for chunk, vector in zip(batch, vectors)]
                await self._rag_client.do_upsert_points(points)
            except CompassError as exc:
                failed_batches.append(batch_index)
                self.logging.error(
                    "Batch %d of '%s' (%d chunk(s)) was skipped: %s",
                    batch_index, source, len(batch), exc,
                )
                continue
            indexed += len(batch)
        return indexed, failed_batches

    def _build_result(
        self,
        source: str,
        access: AccessLevel,
        version: int | None,
        chunks: list[TextChunk],
        indexed: int,
        failed_batches: list[int],
        stale_flags: int,
    ) -> IngestionResult:
        if indexed == 0:
            status = IngestStatus.FAILED
            message = f"Failed to index '{source}'."
        elif failed_batches or stale_flags:
            status = IngestStatus.PARTIAL
            message = f"'{source}' was only partially processed; {len(failed_batches)} batch(es) failed, {stale_flags} stale latest flag(s)."
        else:
            status = IngestStatus.INDEXED
            message = f"'{source}' processed successfully."

        log = self.logging.info if status == IngestStatus.INDEXED else self.logging.warning
        log("Ingestion of '%s' finished with status %s (%d/%d chunks).", source, status.value, indexed, len(chunks))
        return IngestionResult(
            status=status,
            source=source,
            access=access,
            version=version,
            chunks_total=len(chunks),
            chunks_indexed=indexed,
            failed_batches=failed_batches,
            stale_flags=stale_flags,
            message=message,
        )
