import mimetypes

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse

from server.dependencies.auth import get_principal
from shared.exceptions.errors import InvalidInput
from shared.ingestion.ContentExtractor import MIME_DOCX
from shared.models.access import AccessLevel, AccessRequest, Principal, Role
from shared.models.ingestion import IngestionResult, IngestStatus

router = APIRouter(prefix="/upload", tags=["documents"])

mimetypes.add_type(MIME_DOCX, ".docx")


def detect_mime_type(upload: UploadFile) -> str:
    """Use the declared content type, falling back to the file extension for generic uploads."""
    declared = (upload.content_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(upload.filename or "")
    return guessed or declared


@router.post("", response_model=IngestionResult)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    accessLevel: str = Form(default=AccessLevel.PRIVATE.value),
    roles: str | None = Form(default=None),
    principal: Principal = Depends(get_principal),
):
    """Upload a PDF, DOCX or text file. Admins may share it publicly or with roles; everyone else uploads privately."""
    try:
        level = AccessLevel(accessLevel.strip().lower())
    except ValueError:
        raise InvalidInput(f"Invalid access level '{accessLevel}'.")
    access = AccessRequest(level=level, roles=Role.parse_list(roles) if level == AccessLevel.ROLES else [])

    data = await file.read()
    result = await request.app.state.ingestion_service.do_ingest(
        data=data,
        filename=file.filename or "",
        mime_type=detect_mime_type(file),
        principal=principal,
        access=access,
    )
    status_code = 502 if result.status == IngestStatus.FAILED else 200
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))
