"""Streaming answer pipeline.

Validating -> PolicyCheck -> HistoryLoad -> Embed -> Retrieve -> Generate -> PersistAndClose

prepare() runs everything up to the first generated token so that failures
surface as an HTTP error before the response headers are sent. The returned
PreparedAnswer streams the tokens to the caller while accumulating them; the
assistant message and its sources are persisted once the stream ends.
"""

import asyncio
from typing import AsyncIterator

from server.core import prompts
from server.models.requests import ChatRequest
from shared.access.AccessPolicyEngine import AccessPolicyEngine
from shared.access.PausedDocumentRegistry import PausedDocumentRegistry
from shared.cache.EmbeddingCache import EmbeddingCache
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.QueryHit import QueryHit
from shared.exceptions.errors import CompassError, InvalidInput, NotFound, Unauthorized
from shared.helper.HelperConfig import HelperConfig
from shared.models.access import Principal, QueryMode
from shared.models.conversation import MessageRole, SourceRecord
from shared.persistence.ConversationStore import ConversationStore

MAX_QUERY_CHARS = 2000
TITLE_CHARS = 50
# stored with each chunk but never shown to the asking user
_HIDDEN_SOURCE_FIELDS = frozenset({"text", "user_id", "created"})


class AnswerAccumulator:
    """Collects streamed tokens for persistence."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def append(self, token: str) -> None:
        self._parts.append(token)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __bool__(self) -> bool:
        return bool(self._parts)


class PreparedAnswer:
    """An answer ready to stream. ``sources`` and ``conversation_id`` are known before the first byte."""

    def __init__(self, conversation_id: str, sources: list[SourceRecord]) -> None:
        self.conversation_id = conversation_id
        self.sources = sources

    def stream(self) -> AsyncIterator[str]:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release what the answer holds if stream() was never consumed."""


class FixedAnswer(PreparedAnswer):
    """A canned reply that was already persisted; streamed as a single chunk."""

    def __init__(self, conversation_id: str, text: str) -> None:
        super().__init__(conversation_id=conversation_id, sources=[])
        self.text = text

    async def stream(self) -> AsyncIterator[str]:
        yield self.text


class GeneratedAnswer(PreparedAnswer):
    """Fans generated tokens out to the caller and to an accumulator.

    When the caller stops reading early the provider stream is closed and, if
    flush_partial is set, the text received so far is persisted. A provider
    failure mid-stream persists the partial text and re-raises. If the caller
    never starts reading, aclose() does the same for the first token.
    """

    def __init__(
        self,
        streamer: "AnswerStreamer",
        conversation_id: str,
        sources: list[SourceRecord],
        first_token: str,
        tokens: AsyncIterator[str],
        flush_partial: bool,
    ) -> None:
        super().__init__(conversation_id=conversation_id, sources=sources)
        self._streamer = streamer
        self._first_token = first_token
        self._tokens = tokens
        self._flush_partial = flush_partial
        self._started = False
        self.closed = False

    async def stream(self) -> AsyncIterator[str]:
        if self._started or self.closed:
            return
        self._started = True
        accumulator = AnswerAccumulator()
        outcome = "disconnected"
        try:
            if self._first_token:
                accumulator.append(self._first_token)
                yield self._first_token
            async for token in self._tokens:
                accumulator.append(token)
                yield token
            outcome = "completed"
        except CompassError:
            outcome = "failed"
            raise
        finally:
            await self._finish(accumulator, outcome)

    async def aclose(self) -> None:
        if self._started or self.closed:
            return
        accumulator = AnswerAccumulator()
        if self._first_token:
            accumulator.append(self._first_token)
        await self._finish(accumulator, "disconnected")

    async def _finish(self, accumulator: AnswerAccumulator, outcome: str) -> None:
        self.closed = True
        if outcome == "completed":
            persist = True
        elif outcome == "failed":
            persist = bool(accumulator)
        else:
            persist = self._flush_partial and bool(accumulator)
        task = self._streamer.schedule_persist(self.conversation_id, accumulator.text, self.sources, outcome) if persist else None
        if outcome == "disconnected":
            self._streamer.logging.info(
                "Client left conversation %s after %d chars; %s.",
                self.conversation_id, len(accumulator.text), "flushing partial answer" if persist else "discarding partial answer",
            )
        await self._tokens.aclose()
        if task is not None:
            await asyncio.shield(task)


class AnswerStreamer:
    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
        embedding_cache: EmbeddingCache,
        conversation_store: ConversationStore,
        paused_registry: PausedDocumentRegistry,
        policy: AccessPolicyEngine | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._llm_client = llm_client
        self._embedding_cache = embedding_cache
        self._conversation_store = conversation_store
        self._paused_registry = paused_registry
        self._policy = policy or AccessPolicyEngine()
        self.top_k = int(helper_config.get_number_val("CHAT_TOP_K", default=5))
        self.history_limit = int(helper_config.get_number_val("CHAT_HISTORY_LIMIT", default=10))
        self.flush_partial_on_disconnect = helper_config.get_bool_val("CHAT_FLUSH_PARTIAL_ON_DISCONNECT", default=True)
        self._persist_tasks: set[asyncio.Task] = set()

    ##########################################
    ############### CORE #####################
    ##########################################

    async def prepare(self, principal: Principal | None, request: ChatRequest) -> PreparedAnswer:
        """Run the pipeline up to the first generated token.

        Raises:
            Unauthorized: Without a principal.
            InvalidInput: On an empty or too long query or a malformed version selection.
            NotFound: If the conversation does not exist or belongs to someone else.
            StoreUnavailable | StoreRejected | ProviderUnavailable: If retrieval or generation cannot start.
        """
        # Validating
        if principal is None:
            raise Unauthorized()
        query = (request.query or "").strip()
        if not query or len(query) > MAX_QUERY_CHARS:
            raise InvalidInput(f"Query must be between 1 and {MAX_QUERY_CHARS} characters.")
        mode = QueryMode.from_request(request.source, request.version)

        # PolicyCheck
        if prompts.is_sensitive(query):
            conversation_id, _ = await self._open_conversation(principal, request.conversation_id, query)
            await self._conversation_store.append_message(conversation_id, MessageRole.USER, query)
            await self._conversation_store.save_assistant_answer(conversation_id, prompts.SAFETY_TEXT, [])
            self.logging.info("Sensitive topic detected in conversation %s, answered with safety text.", conversation_id)
            return FixedAnswer(conversation_id, prompts.SAFETY_TEXT)

        # HistoryLoad
        conversation_id, history = await self._open_conversation(principal, request.conversation_id, query)
        await self._conversation_store.append_message(conversation_id, MessageRole.USER, query)

        # Embed
        vector = await self._embedding_cache.get_or_compute(query)

        # Retrieve
        paused = await self._paused_registry.list()
        query_filter = self._policy.build_filter(principal, mode, paused)
        hits = await self._rag_client.do_query(vector, query_filter, top_k=self.top_k)
        self.logging.info("Conversation %s: retrieved %d chunk(s).", conversation_id, len(hits))

        if not hits:
            await self._conversation_store.save_assistant_answer(conversation_id, prompts.NO_RESULTS_TEXT, [])
            return FixedAnswer(conversation_id, prompts.NO_RESULTS_TEXT)

        # Generate
        sources = [self._to_source(hit) for hit in hits]
        messages = self._build_messages(query, history, hits, mode, request.persona)
        tokens = self._llm_client.do_chat_stream(messages)
        try:
            first_token = await tokens.__anext__()
        except StopAsyncIteration:
            first_token = ""
        except CompassError:
            self.logging.error("Generation could not start for conversation %s.", conversation_id)
            raise

        return GeneratedAnswer(
            streamer=self,
            conversation_id=conversation_id,
            sources=sources,
            first_token=first_token,
            tokens=tokens,
            flush_partial=self.flush_partial_on_disconnect,
        )

    ##########################################
    ############### HELPERS ##################
    ##########################################

    async def _open_conversation(self, principal: Principal, conversation_id: str | None, query: str) -> tuple[str, list[dict]]:
        """Load an owned conversation with its recent history, or create a new one."""
        if conversation_id:
            conversation = await self._conversation_store.get_conversation(conversation_id, principal.id)
            if conversation is None:
                raise NotFound("Conversation not found.")
            messages = await self._conversation_store.load_messages(conversation.id, limit=self.history_limit)
            history = [{"role": message.role.value, "content": message.content} for message in messages]
            return conversation.id, history

        conversation = await self._conversation_store.create_conversation(principal.id, query[:TITLE_CHARS])
        return conversation.id, []

    def _to_source(self, hit: QueryHit) -> SourceRecord:
        metadata = {key: value for key, value in hit.payload.items() if key not in _HIDDEN_SOURCE_FIELDS}
        metadata["score"] = hit.score
        return SourceRecord(content=hit.payload.get("text", ""), metadata=metadata)

    def _build_messages(self, query: str, history: list[dict], hits: list[QueryHit], mode: QueryMode, persona: str | None) -> list[dict]:
        note = prompts.version_note(mode.source, mode.version) if mode.is_explicit else None
        context = [hit.payload.get("text", "") for hit in hits]
        return [
            {"role": "system", "content": prompts.system_prompt(persona)},
            *history,
            {"role": "user", "content": prompts.user_prompt(query, context, note)},
        ]

    ##########################################
    ############## PERSISTENCE ###############
    ##########################################

    def schedule_persist(self, conversation_id: str, text: str, sources: list[SourceRecord], outcome: str) -> asyncio.Task:
        """Persist the assistant answer in a task of its own so a cancelled response cannot interrupt it."""
        task = asyncio.get_running_loop().create_task(self._persist(conversation_id, text, sources, outcome))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)
        return task

    async def _persist(self, conversation_id: str, text: str, sources: list[SourceRecord], outcome: str) -> None:
        try:
            await self._conversation_store.save_assistant_answer(conversation_id, text, sources)
            self.logging.debug("Persisted %s answer (%d chars) for conversation %s.", outcome, len(text), conversation_id)
        except Exception:
            # the response is already on the wire, nothing left to report to
            self.logging.exception("Could not persist the %s answer for conversation %s.", outcome, conversation_id)

    async def drain(self) -> None:
        """Wait for pending answer writes, e.g. on shutdown."""
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)
