from __future__ import annotations

import logging
import mimetypes
import time
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from docportal.config import PortalSettings, configure_logging
from docportal.errors import DocumentValidationError, PortalError
from docportal.portal import DocumentPortal
from docportal.processor_client import DocumentProcessor
from docportal.retention import is_page_request
from docportal.schema_models import DOCX_MIME_TYPE, ProcessedPathRequest, is_office_mime_type, validation_errors

logger = logging.getLogger(__name__)

router = APIRouter()


def get_portal(request: Request) -> DocumentPortal:
    return request.app.state.portal


def _parse_document_id(raw: str) -> int:
    candidate = raw.strip()
    if not (candidate.isascii() and candidate.isdigit()):
        raise DocumentValidationError("Invalid document ID")
    return int(candidate)


def _content_disposition(kind: str, filename: str) -> str:
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", errors="replace").decode("ascii").replace("?", "_")
        return f"{kind}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return f'{kind}; filename="{filename}"'


async def api_prefix_alias(request: Request, call_next):
    """Accept both `/path` and `/api/path` for frontend compatibility."""
    if request.scope.get("path", "").startswith("/api/"):
        request.scope["path"] = request.scope["path"][4:]
    return await call_next(request)


async def track_page_connections(request: Request, call_next):
    if not is_page_request(request.url.path):
        return await call_next(request)
    tracker = request.app.state.portal.connections
    tracker.opened()
    try:
        return await call_next(request)
    finally:
        tracker.closed()


async def log_requests(request: Request, call_next):
    path = request.url.path
    if not path.startswith("/api"):
        return await call_next(request)
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s %s %d in %.1fms", request.method, path, response.status_code, elapsed_ms)
    return response


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"status": "error", "message": "Invalid request", "errors": validation_errors(exc)},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"status": "error", "message": "Internal server error"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    report = app.state.portal.startup()
    if report is not None:
        logger.info("Startup sweep removed %d blobs", report.removed_blobs)
    yield
    logger.info("Document portal shutting down")


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/documents")
def list_documents(portal: DocumentPortal = Depends(get_portal)):
    return [document.to_dict() for document in portal.list_documents()]


@router.post("/documents")
async def upload_document(
    file: UploadFile | None = File(None),
    portal: DocumentPortal = Depends(get_portal),
):
    if file is None:
        raise DocumentValidationError("No file uploaded")
    content = await file.read()
    document = portal.upload(file.filename, content, file.content_type)
    logger.info("Uploaded %s as document %d", document.original_name, document.id)
    return JSONResponse(status_code=201, content=document.to_dict())


@router.get("/documents/{document_id}")
def get_document(document_id: str, portal: DocumentPortal = Depends(get_portal)):
    return portal.get_document(_parse_document_id(document_id)).to_dict()


@router.delete("/documents/{document_id}")
def delete_document(document_id: str, portal: DocumentPortal = Depends(get_portal)):
    portal.delete(_parse_document_id(document_id))
    return {"success": True, "message": "Document deleted successfully"}


@router.post("/documents/{document_id}/process")
def process_document(document_id: str, portal: DocumentPortal = Depends(get_portal)):
    return portal.process(_parse_document_id(document_id))


@router.get("/documents/{document_id}/download")
def download_document(document_id: str, portal: DocumentPortal = Depends(get_portal)):
    document, content = portal.original_content(_parse_document_id(document_id))
    return Response(
        content=content,
        media_type=document.mime_type,
        headers={"Content-Disposition": _content_disposition("attachment", document.original_name)},
    )


@router.get("/documents/{document_id}/download-processed")
def download_processed_document(document_id: str, portal: DocumentPortal = Depends(get_portal)):
    _, content, filename = portal.processed_content(_parse_document_id(document_id))
    return Response(
        content=content,
        media_type=mimetypes.guess_type(filename)[0] or DOCX_MIME_TYPE,
        headers={"Content-Disposition": _content_disposition("attachment", filename)},
    )


@router.get("/documents/{document_id}/preview")
def preview_document(document_id: str, portal: DocumentPortal = Depends(get_portal)):
    document, content = portal.original_content(_parse_document_id(document_id))
    headers = {}
    if document.mime_type == "application/pdf":
        headers["Content-Disposition"] = _content_disposition("inline", document.original_name)
    elif is_office_mime_type(document.mime_type):
        headers["X-Document-Type"] = "office"
    return Response(content=content, media_type=document.mime_type, headers=headers)


@router.post("/documents/{document_id}/update-processed")
def update_processed(
    document_id: str,
    body: ProcessedPathRequest,
    portal: DocumentPortal = Depends(get_portal),
):
    document = portal.record_processed(_parse_document_id(document_id), body.processed_path)
    return {"success": True, "message": "Document updated", "document": document.to_dict()}


@router.post("/documents/{document_id}/update-processed-with-content")
async def update_processed_with_content(
    document_id: str,
    file: UploadFile | None = File(None),
    processed_path: str | None = Form(None, alias="processedPath"),
    status: str | None = Form(None),
    portal: DocumentPortal = Depends(get_portal),
):
    parsed_id = _parse_document_id(document_id)
    content = await file.read() if file is not None else None
    document = portal.record_processed_content(
        parsed_id,
        processed_path or (file.filename if file is not None else None),
        content,
        status,
    )
    return {
        "success": True,
        "message": "Document updated with processed content",
        "document": document.to_dict(),
    }


@router.get("/output-files")
def output_files(portal: DocumentPortal = Depends(get_portal)):
    return [document.to_dict() for document in portal.output_files()]


@router.get("/form-documents")
def form_documents(portal: DocumentPortal = Depends(get_portal)):
    return [document.to_dict() for document in portal.form_documents()]


@router.get("/download-template")
def download_template(path: str | None = None, portal: DocumentPortal = Depends(get_portal)):
    filename, content = portal.template_content(path)
    return Response(
        content=content,
        media_type=DOCX_MIME_TYPE,
        headers={"Content-Disposition": _content_disposition("attachment", filename)},
    )


@router.post("/clear-memory")
def clear_memory(portal: DocumentPortal = Depends(get_portal)):
    report = portal.clear_memory()
    return {"success": True, "message": "Memory storage cleared successfully", **report.to_dict()}


@router.post("/process-template")
def process_template(portal: DocumentPortal = Depends(get_portal)):
    return portal.process_template()


@router.post("/process-template-in-memory")
def process_template_in_memory(portal: DocumentPortal = Depends(get_portal)):
    return portal.process_template_in_memory()


def create_app(
    settings: PortalSettings | None = None,
    *,
    portal: DocumentPortal | None = None,
    processor: DocumentProcessor | None = None,
) -> FastAPI:
    settings = settings or PortalSettings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Document Portal API", lifespan=lifespan)
    app.state.settings = settings
    app.state.portal = portal or DocumentPortal(settings, processor=processor)

    # Registered innermost first; the tracker and logger see the raw /api path.
    app.middleware("http")(api_prefix_alias)
    app.middleware("http")(track_page_connections)
    app.middleware("http")(log_requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
