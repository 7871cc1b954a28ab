from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_principal
from server.models.responses import AccountDeletedResponse
from shared.models.access import Principal

router = APIRouter(prefix="/user", tags=["user"])


@router.delete("/me")
async def delete_account_data(request: Request, principal: Principal = Depends(get_principal)) -> AccountDeletedResponse:
    """Delete the caller's conversations, feedback and private documents."""
    conversations = await request.app.state.conversation_store.delete_user_data(principal.id)
    documents = await request.app.state.document_admin_service.delete_user_documents(principal.id)
    return AccountDeletedResponse(
        message="Your data has been deleted.",
        conversations_deleted=conversations,
        documents_deleted=documents,
    )
