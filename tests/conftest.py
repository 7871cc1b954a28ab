import logging
import os
from types import SimpleNamespace

import httpx
import pytest

os.environ.setdefault("LOG_TO_FILE", "false")

from server.api_server import build_app, wire_services  # noqa: E402
from shared.clients.embed.EmbedClientManager import EmbedClientManager  # noqa: E402
from shared.clients.llm.LLMClientManager import LLMClientManager  # noqa: E402
from shared.clients.rag.RAGClientManager import RAGClientManager  # noqa: E402
from shared.helper.HelperConfig import HelperConfig  # noqa: E402
from shared.models.access import Principal, Role  # noqa: E402
from shared.persistence.Database import Database  # noqa: E402
from tests.fakes.ollama import FakeOllama  # noqa: E402
from tests.fakes.qdrant import FakeQdrant  # noqa: E402

API_KEY = "test-api-key"


def auth_headers(user_id: str = "u1", role: str | None = None) -> dict:
    headers = {"X-Api-Key": API_KEY, "X-User-Id": user_id}
    if role:
        headers["X-User-Role"] = role
    return headers


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    values = {
        "LOG_TO_FILE": "false",
        "RAG_ENGINE": "qdrant",
        "RAG_QDRANT_BASE_URL": "http://qdrant.test",
        "RAG_QDRANT_COLLECTION": "compass_test",
        "EMBED_ENGINE": "ollama",
        "EMBED_OLLAMA_BASE_URL": "http://ollama.test",
        "EMBED_MODEL": "fake-embed",
        "LLM_ENGINE": "ollama",
        "LLM_OLLAMA_BASE_URL": "http://ollama.test",
        "LLM_CHAT_MODEL": "fake-chat",
        "RAG_MAX_RETRIES": "0",
        "EMBED_MAX_RETRIES": "0",
        "LLM_MAX_RETRIES": "0",
        "RAG_RETRY_BACKOFF": "0",
        "EMBED_RETRY_BACKOFF": "0",
        "LLM_RETRY_BACKOFF": "0",
        "API_SERVER_API_KEY": API_KEY,
        "PAUSED_DOCUMENTS_FILE": str(tmp_path / "paused_documents.json"),
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'compass.db'}",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=logging.getLogger("compass.tests"))


@pytest.fixture
def fake_qdrant() -> FakeQdrant:
    fake = FakeQdrant()
    fake.collection_exists = True
    return fake


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
async def rag_client(helper_config, fake_qdrant):
    client = RAGClientManager(helper_config=helper_config).get_client()
    await client.boot(transport=httpx.MockTransport(fake_qdrant.handler))
    yield client
    await client.close()


@pytest.fixture
async def embed_client(helper_config, fake_ollama):
    client = EmbedClientManager(helper_config=helper_config).get_client()
    await client.boot(transport=httpx.MockTransport(fake_ollama.handler))
    yield client
    await client.close()


@pytest.fixture
async def llm_client(helper_config, fake_ollama):
    client = LLMClientManager(helper_config=helper_config).get_client()
    await client.boot(transport=httpx.MockTransport(fake_ollama.handler))
    yield client
    await client.close()


@pytest.fixture
async def database(helper_config):
    db = Database(helper_config=helper_config)
    await db.init_models()
    yield db
    await db.close()


@pytest.fixture
async def services(helper_config, rag_client, embed_client, llm_client, database):
    """All services wired the way the API server wires them."""
    state = SimpleNamespace()
    wire_services(state, helper_config, rag_client, embed_client, llm_client, database)
    yield state
    await state.answer_streamer.drain()


@pytest.fixture
async def api_client(helper_config, rag_client, embed_client, llm_client, database):
    app = build_app(lifespan_handler=None)
    wire_services(app.state, helper_config, rag_client, embed_client, llm_client, database)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://compass.test") as client:
        yield client
    await app.state.answer_streamer.drain()


@pytest.fixture
def admin() -> Principal:
    return Principal(id="admin-1", role=Role.ADMIN)


@pytest.fixture
def sales_user() -> Principal:
    return Principal(id="u1", role=Role.SALES)


@pytest.fixture
def ingest(services):
    """Upload plain text through the ingestion service."""
    from shared.models.access import AccessLevel, AccessRequest

    async def _ingest(principal: Principal, source: str, text: str, level: AccessLevel = AccessLevel.PUBLIC, roles: list[Role] | None = None):
        return await services.ingestion_service.do_ingest(
            data=text.encode("utf-8"),
            filename=source,
            mime_type="text/plain",
            principal=principal,
            access=AccessRequest(level=level, roles=roles or []),
        )

    return _ingest
