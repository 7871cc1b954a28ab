from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import get_principal
from server.models.requests import DeletePrivateDocumentRequest
from server.models.responses import DeleteResponse
from shared.exceptions.errors import NotFound
from shared.models.access import Principal
from shared.models.documents import PrivateDocument

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("/private")
async def list_private_documents(request: Request, principal: Principal = Depends(get_principal)) -> list[PrivateDocument]:
    return await request.app.state.document_admin_service.list_private_documents(principal)


@router.post("/delete")
async def delete_private_document(
    request: Request,
    body: DeletePrivateDocumentRequest,
    principal: Principal = Depends(get_principal),
) -> DeleteResponse:
    """Delete one of the caller's private documents."""
    deleted = await request.app.state.document_admin_service.delete_private_document(principal, body.source)
    if not deleted:
        raise NotFound("Document not found.")
    return DeleteResponse(message=f"Deleted '{body.source}'.", deleted=deleted)
