from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import require_admin
from server.models.requests import DeleteDocumentRequest, DocumentStatusRequest, ReconcileRequest
from server.models.responses import DeleteResponse, DocumentStatusResponse
from shared.exceptions.errors import NotFound
from shared.models.access import Principal
from shared.models.documents import ReconcileReport, SharedDocument

router = APIRouter(prefix="/admin/documents", tags=["admin"])


@router.get("")
async def list_documents(request: Request, _: Principal = Depends(require_admin)) -> list[SharedDocument]:
    """All shared documents with their versions, newest first, and their paused/active status."""
    return await request.app.state.document_admin_service.list_documents()


@router.delete("")
async def delete_document(request: Request, body: DeleteDocumentRequest, _: Principal = Depends(require_admin)) -> DeleteResponse:
    """Delete one version of a shared document, or all versions when no version is given."""
    deleted = await request.app.state.document_admin_service.delete_document(body.source, body.version)
    if not deleted:
        raise NotFound("Document not found.")
    target = f"version {body.version} of '{body.source}'" if body.version is not None else f"'{body.source}'"
    return DeleteResponse(message=f"Deleted {target}.", deleted=deleted)


@router.post("/status")
async def set_document_status(request: Request, body: DocumentStatusRequest, _: Principal = Depends(require_admin)) -> DocumentStatusResponse:
    """Pause or re-activate a shared document for retrieval."""
    status = await request.app.state.document_admin_service.set_status(body.source, body.status)
    return DocumentStatusResponse(message=f"'{body.source}' is now {status.value}.", source=body.source, status=status)


@router.post("/reconcile")
async def reconcile_documents(request: Request, body: ReconcileRequest | None = None, _: Principal = Depends(require_admin)) -> ReconcileReport:
    """Repair is_latest flags so only the highest version of each shared document is served."""
    return await request.app.state.document_admin_service.reconcile_latest(body.source if body else None)
