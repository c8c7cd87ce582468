from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile

from server.dependencies.auth import get_user_id, verify_api_key
from server.models.requests import DocumentUpdateRequest
from server.models.responses import (
    AuditResponse,
    DeleteResponse,
    DocumentListResponse,
    DocumentResponse,
    DownloadResponse,
    Pagination,
    UploadResponse,
)

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("")
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> UploadResponse:
    """Upload a PDF, DOCX, DOC or TXT file and queue it for processing.

    Args:
        request (Request): FastAPI request (provides app.state.document_service).
        file (UploadFile): The multipart file.
        user_id (str): Acting user from the X-User-Id header.
        _ (None): Auth dependency result (unused).

    Returns:
        UploadResponse: The new document id and the ingestion task id.
    """
    document_service = request.app.state.document_service
    filename = file.filename or "upload"
    mime_type = file.content_type or "application/octet-stream"
    # reject before reading the body when the size is already known
    if file.size is not None:
        document_service.validate_upload(filename, mime_type, file.size)
    data = await file.read()
    record, task_id = await document_service.do_upload(user_id, filename, data, mime_type)
    return UploadResponse(doc_id=record.doc_id, filename=record.filename, task_id=task_id)


@router.get("")
async def list_documents(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> DocumentListResponse:
    """List the user's documents, newest upload first."""
    result = await request.app.state.document_service.do_list(user_id, page=page, limit=limit)
    return DocumentListResponse(
        documents=result.documents,
        pagination=Pagination(
            current_page=result.current_page,
            total_pages=result.total_pages,
            total_items=result.total_items,
            has_next=result.has_next,
            has_prev=result.has_prev,
        ),
    )


@router.get("/{doc_id}")
async def get_document(
    request: Request,
    doc_id: str,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> DocumentResponse:
    record = await request.app.state.document_service.do_get(doc_id, user_id)
    return DocumentResponse(document=record)


@router.patch("/{doc_id}")
async def update_document(
    request: Request,
    doc_id: str,
    body: DocumentUpdateRequest,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> DocumentResponse:
    """Rename a document or replace parts of its metadata."""
    try:
        record = await request.app.state.document_service.do_update(
            doc_id, user_id, filename=body.filename, metadata=body.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return DocumentResponse(document=record, message="Document updated successfully")


@router.delete("/{doc_id}")
async def delete_document(
    request: Request,
    doc_id: str,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> DeleteResponse:
    """Delete a document from every store; unreachable stores are reported, not fatal."""
    report = await request.app.state.document_service.do_delete(doc_id, user_id)
    if report.is_complete:
        message = "Document deleted successfully"
    else:
        message = "Document deleted with warnings: " + ", ".join(report.skipped + report.failed) + " not cleaned up"
    return DeleteResponse(
        success=not report.failed,
        message=message,
        deleted=report.deleted,
        skipped=report.skipped,
        failed=report.failed,
        warnings=report.warnings,
    )


@router.get("/{doc_id}/download")
async def download_document(
    request: Request,
    doc_id: str,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> DownloadResponse:
    info = await request.app.state.document_service.do_get_download(doc_id, user_id)
    return DownloadResponse(
        download_url=info["downloadUrl"],
        filename=info["filename"],
        file_size=info["fileSize"],
        content_type=info["contentType"],
    )


@router.get("/{doc_id}/audit")
async def audit_document(
    request: Request,
    doc_id: str,
    user_id: str = Depends(get_user_id),
    _: None = Depends(verify_api_key),
) -> AuditResponse:
    """Compare vector and graph chunk counts of a document."""
    audit = await request.app.state.reconciliation_service.do_audit_document(doc_id, user_id)
    return AuditResponse(audit=audit, consistent=audit.is_consistent)
