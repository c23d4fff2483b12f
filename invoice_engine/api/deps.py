from functools import lru_cache

from fastapi import Depends
from pydantic import BaseModel, Field

from ..models.invoice import Invoice, StatusHistory
from ..services.assembler import InvoiceAssembler
from ..services.form_recognizer import OcrOrchestrator
from ..services.invoice_types import OcrResult
from ..services.status_service import InvoiceStatusService
from ..services.storage import invoice_store
from ..services.workflow_triggers import WorkflowTriggerService


class UploadResponse(BaseModel):
    ocr_result: OcrResult
    invoice: Invoice | None = None
    errors: list[str] = Field(default_factory=list)


class TransitionsResponse(BaseModel):
    invoice_id: int
    current_status: int
    valid_transitions: list[int]


class CanChangeResponse(BaseModel):
    invoice_id: int
    current_status: int
    requested_status: int
    allowed: bool


class StatusChangeResponse(BaseModel):
    invoice: Invoice
    history: StatusHistory


class WorkflowActionResponse(BaseModel):
    action: str
    invoice: Invoice
    history: StatusHistory
    notification: dict | None = None  # Teams card result when the action notifies someone


@lru_cache
def get_status_service() -> InvoiceStatusService:
    # One shared instance so the per-invoice locks are shared across requests
    return InvoiceStatusService(invoice_store)


def get_assembler(status_service: InvoiceStatusService = Depends(get_status_service)) -> InvoiceAssembler:
    return InvoiceAssembler(status_service.store, default_actor=status_service.default_actor)


def get_workflow_service(
    status_service: InvoiceStatusService = Depends(get_status_service),
) -> WorkflowTriggerService:
    return WorkflowTriggerService(status_service)


def get_ocr_orchestrator() -> OcrOrchestrator:
    return OcrOrchestrator()
