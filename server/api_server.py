"""FastAPI application entry point for the compass RAG engine."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from server.core.AnswerStreamer import AnswerStreamer
from server.core.InsightsService import InsightsService
from server.routers.AdminRouter import router as admin_router
from server.routers.ChatRouter import router as chat_router
from server.routers.ConversationsRouter import router as conversations_router
from server.routers.DocumentsRouter import router as documents_router
from server.routers.InsightsRouter import router as insights_router
from server.routers.UploadRouter import router as upload_router
from server.routers.UserRouter import router as user_router
from services.documents.DocumentAdminService import DocumentAdminService
from services.ingestion.IngestionService import IngestionService
from shared.access.AccessPolicyEngine import AccessPolicyEngine
from shared.access.PausedDocumentRegistry import PausedDocumentRegistry
from shared.cache.EmbeddingCache import EmbeddingCache
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.exceptions.errors import CompassError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.KeyedLock import KeyedLock
from shared.logging.logging_setup import setup_logging
from shared.persistence.ConversationStore import ConversationStore
from shared.persistence.Database import Database

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def wire_services(
    state,
    helper_config: HelperConfig,
    rag_client: RAGClientInterface,
    embed_client: EmbedClientInterface,
    llm_client: LLMClientInterface,
    database: Database,
) -> None:
    """Build all services on top of booted clients and attach them to app.state."""
    policy = AccessPolicyEngine()
    source_locks = KeyedLock()
    embedding_cache = EmbeddingCache(helper_config=helper_config, embed_client=embed_client)
    paused_registry = PausedDocumentRegistry(helper_config=helper_config)
    conversation_store = ConversationStore(helper_config=helper_config, database=database)

    state.helper_config = helper_config
    state.rag_client = rag_client
    state.embed_client = embed_client
    state.llm_client = llm_client
    state.database = database
    state.embedding_cache = embedding_cache
    state.paused_registry = paused_registry
    state.conversation_store = conversation_store
    state.ingestion_service = IngestionService(
        helper_config=helper_config,
        rag_client=rag_client,
        embedding_cache=embedding_cache,
        policy=policy,
        source_locks=source_locks,
    )
    state.document_admin_service = DocumentAdminService(
        helper_config=helper_config,
        rag_client=rag_client,
        paused_registry=paused_registry,
        policy=policy,
        source_locks=source_locks,
    )
    state.answer_streamer = AnswerStreamer(
        helper_config=helper_config,
        rag_client=rag_client,
        llm_client=llm_client,
        embedding_cache=embedding_cache,
        conversation_store=conversation_store,
        paused_registry=paused_registry,
        policy=policy,
    )
    state.insights_service = InsightsService(helper_config=helper_config, conversation_store=conversation_store)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    helper_config = HelperConfig(logger=logging)

    rag_client = RAGClientManager(helper_config=helper_config).get_client()
    embed_client = EmbedClientManager(helper_config=helper_config).get_client()
    llm_client = LLMClientManager(helper_config=helper_config).get_client()
    clients = [rag_client, embed_client, llm_client]

    logging.info("Booting all clients...")
    for client in clients:
        await client.boot()
    logging.info("All clients booted successfully.")

    database = Database(helper_config=helper_config)
    try:
        await check_connections(rag_client, embed_client, llm_client)
        await ensure_collection(rag_client, embed_client)
        await database.init_models()
        wire_services(app.state, helper_config, rag_client, embed_client, llm_client, database)
    except BaseException:
        for client in clients:
            await client.close()
        await database.close()
        raise

    # while the app is running...
    yield

    # when the app shuts down
    logging.info("Shutting down, closing all clients...")
    await app.state.answer_streamer.drain()
    for client in clients:
        await client.close()
    await database.close()
    logging.info("All clients closed.")


async def check_connections(
    rag_client: RAGClientInterface,
    embed_client: EmbedClientInterface,
    llm_client: LLMClientInterface,
) -> None:
    """Check connectivity to all configured backends on startup.

    Raises:
        RuntimeError: If a backend is not reachable. Nothing can be served without any of them.
    """
    for name, client in (("RAG", rag_client), ("Embed", embed_client), ("LLM", llm_client)):
        result = await client.do_healthcheck()
        if not result.is_success:
            raise RuntimeError(
                f"{name} client '{client.__class__.__name__}' is not reachable (status {result.status_code})."
            )


async def ensure_collection(rag_client: RAGClientInterface, embed_client: EmbedClientInterface) -> None:
    """Create the vector collection, sized for the embedding model, if it does not exist yet."""
    if await rag_client.do_existence_check():
        return
    vector_size, distance = await embed_client.do_fetch_embedding_vector_size()
    await rag_client.do_create_collection(vector_size=vector_size, distance=distance)
    logging.info("Created vector collection (size %d, %s distance).", vector_size, distance)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CompassError)
    async def handle_compass_error(request: Request, exc: CompassError) -> JSONResponse:
        if exc.status_code >= 500:
            logging.error("%s %s failed: %s (%s)", request.method, request.url.path, exc, exc.__class__.__name__)
        else:
            logging.info("%s %s rejected with %d: %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content={"message": exc.public_message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logging.info("%s %s has an invalid body: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=400, content={"message": "Invalid request."})


def build_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        title="compass_rag_engine",
        description=(
            "Retrieval-augmented answering over company documents with per-document access control, "
            "versioned shared uploads and streamed answers. Upload via POST /upload, ask via POST /chat."
        ),
        version=app_version,
        lifespan=lifespan_handler,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Sources", "X-Conversation-Id"],
    )

    register_exception_handlers(app)

    for router in (
        chat_router,
        upload_router,
        admin_router,
        documents_router,
        conversations_router,
        insights_router,
        user_router,
    ):
        app.include_router(router)
    return app


app = build_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting compass_rag_engine API Server v%s from root dir: %s on port %s...",
        app_version,
        os.environ.get("ROOT_DIR", os.getcwd()),
        os.environ.get("API_SERVER_PORT", "8000"),
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("API_SERVER_PORT", "8000")))
