import os
import tempfile
from contextlib import contextmanager
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger

from ..deps import UploadResponse, get_assembler, get_ocr_orchestrator
from ...core.exceptions import (
    ConfigurationError,
    ContentError,
    DuplicateInvoiceError,
    ProviderError,
    ValidationError,
)
from ...services.assembler import InvoiceAssembler
from ...services.form_recognizer import OcrOrchestrator
from ...services.invoice_types import OcrResult

router = APIRouter(prefix="/invoices", tags=["invoices"])


@contextmanager
def temporary_upload(content: bytes, filename: str | None = None):
    """Write an upload to a temp file and remove it on every exit path."""
    suffix = Path(filename).suffix if filename else ""
    fd, path = tempfile.mkstemp(prefix="invoice-", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        yield Path(path)
    finally:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


def run_ocr(ocr: OcrOrchestrator, content: bytes, filename: str | None = None) -> OcrResult:
    """
    OCR an uploaded document.

    Content and provider failures come back as a partial OcrResult with
    ``is_processed=False``. Configuration errors propagate.
    """
    with temporary_upload(content, filename) as path:
        try:
            return ocr.extract(path)
        except (ContentError, ProviderError) as e:
            logger.warning("OCR failed", reason=e.message, filename=filename, error_type=type(e).__name__)
            return OcrResult(is_processed=False, error_message=e.message)


def ocr_unavailable(e: ConfigurationError, filename: str | None = None) -> OcrResult:
    """Partial OcrResult for an upload the OCR provider could not be used for."""
    logger.warning("OCR provider unavailable", reason=e.message, filename=filename, details=e.details)
    return OcrResult(is_processed=False, error_message=e.message)


async def _read_upload(request: Request, file: UploadFile | None) -> tuple[bytes, str | None, str | None]:
    if file:
        # Multipart form-data upload
        return await file.read(), file.filename, file.content_type

    # Raw binary body (e.g., from Logic Apps)
    content = await request.body()
    if not content:
        raise HTTPException(status_code=422, detail="No file provided (either multipart or raw body)")
    return content, None, request.headers.get("content-type")


@router.post("/extract", response_model=OcrResult)
async def extract(
    request: Request,
    file: UploadFile = File(None),
    ocr: OcrOrchestrator = Depends(get_ocr_orchestrator),
):
    """
    Extract invoice fields using Azure Document Intelligence.

    Accepts either:
    - multipart/form-data (file upload via form)
    - application/pdf or application/octet-stream (raw binary body)

    Returns the OCR result only; nothing is stored. A missing or rejected
    provider configuration is a 503 with the partial result.
    """
    content, filename, _ = await _read_upload(request, file)
    try:
        return await run_in_threadpool(run_ocr, ocr, content, filename)
    except ConfigurationError as e:
        body = ocr_unavailable(e, filename)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload(
    request: Request,
    file: UploadFile = File(None),
    project_id: int | None = None,
    created_by: str | None = None,
    ocr: OcrOrchestrator = Depends(get_ocr_orchestrator),
    assembler: InvoiceAssembler = Depends(get_assembler),
):
    """
    OCR a document and create an invoice at status Submitted.

    The invoice is only created when OCR recovered usable fields and the
    required fields validate. Failures return the (partial) OCR result with
    the reasons instead of a bare error.
    """
    content, filename, content_type = await _read_upload(request, file)
    try:
        ocr_result = await run_in_threadpool(run_ocr, ocr, content, filename)
    except ConfigurationError as e:
        ocr_result = ocr_unavailable(e, filename)
        body = UploadResponse(ocr_result=ocr_result, errors=[e.message])
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump(mode="json"))

    if not ocr_result.is_processed:
        body = UploadResponse(ocr_result=ocr_result, errors=[ocr_result.error_message or "OCR failed"])
        return JSONResponse(status_code=422, content=body.model_dump(mode="json"))

    try:
        invoice = await run_in_threadpool(
            assembler.assemble,
            ocr_result,
            created_by=created_by,
            project_id=project_id,
            file_name=filename,
            file_type=content_type,
            file_size=len(content),
        )
    except ValidationError as e:
        code = status.HTTP_409_CONFLICT if isinstance(e, DuplicateInvoiceError) else 422
        body = UploadResponse(ocr_result=ocr_result, errors=e.violations or [e.message])
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    return UploadResponse(ocr_result=ocr_result, invoice=invoice)
