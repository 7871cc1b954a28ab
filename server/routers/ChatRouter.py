import base64
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from server.dependencies.auth import get_principal
from server.models.requests import ChatRequest
from shared.models.access import Principal

router = APIRouter(prefix="/chat", tags=["chat"])


def encode_sources_header(sources: list) -> str:
    """Base64 JSON of [{"pageContent": ..., "metadata": {...}}], safe to send as an HTTP header."""
    items = [{"pageContent": source.content, "metadata": source.metadata} for source in sources]
    return base64.b64encode(json.dumps(items, ensure_ascii=False).encode("utf-8")).decode("ascii")


@router.post("")
async def chat(
    request: Request,
    body: ChatRequest,
    principal: Principal = Depends(get_principal),
) -> StreamingResponse:
    """Answer a question as a plain-text stream.

    The sources used for the answer and the conversation id are sent as the
    X-Sources and X-Conversation-Id headers before the first token.
    """
    answer = await request.app.state.answer_streamer.prepare(principal, body)
    headers = {
        "X-Sources": encode_sources_header(answer.sources),
        "X-Conversation-Id": answer.conversation_id,
        "Cache-Control": "no-cache",
    }
    # releases the provider stream when the client is gone before the body is read
    return StreamingResponse(
        answer.stream(),
        media_type="text/plain; charset=utf-8",
        headers=headers,
        background=BackgroundTask(answer.aclose),
    )
