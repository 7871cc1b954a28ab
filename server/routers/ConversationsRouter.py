from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_principal
from server.models.requests import DeleteConversationRequest
from server.models.responses import MessageResponse
from shared.exceptions.errors import NotFound
from shared.models.access import Principal
from shared.models.conversation import ConversationRecord, MessageRecord

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("")
async def list_conversations(request: Request, principal: Principal = Depends(get_principal)) -> list[ConversationRecord]:
    """The caller's conversations, newest first."""
    return await request.app.state.conversation_store.list_conversations(principal.id)


@router.get("/{conversation_id}/messages")
async def get_messages(request: Request, conversation_id: str, principal: Principal = Depends(get_principal)) -> list[MessageRecord]:
    """Messages of one of the caller's conversations in order, with the sources of each answer."""
    store = request.app.state.conversation_store
    if await store.get_conversation(conversation_id, principal.id) is None:
        raise NotFound("Conversation not found.")
    return await store.load_messages_with_sources(conversation_id)


@router.post("/delete")
async def delete_conversation(
    request: Request,
    body: DeleteConversationRequest,
    principal: Principal = Depends(get_principal),
) -> MessageResponse:
    if not await request.app.state.conversation_store.delete_conversation(body.conversation_id, principal.id):
        raise NotFound("Conversation not found or you do not have permission to delete it.")
    return MessageResponse(message="Conversation deleted successfully.")
