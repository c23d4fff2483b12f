import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from ..deps import (
    CanChangeResponse,
    StatusChangeResponse,
    TransitionsResponse,
    WorkflowActionResponse,
    get_status_service,
    get_workflow_service,
)
from ...models.invoice import Invoice, InvoiceStatus, StatusChangeRequest, StatusHistory, WorkflowActionRequest
from ...services.graph import post_workflow_card
from ...services.status_service import InvoiceStatusService
from ...services.workflow_triggers import WorkflowTriggerService

router = APIRouter(prefix="/invoices", tags=["workflow"])


@router.get("", response_model=list[Invoice])
def list_invoices(status: int | None = Query(None, ge=0, le=8), service: InvoiceStatusService = Depends(get_status_service)):
    """List invoices, newest first, optionally filtered by status (0-8)"""
    return service.store.list_invoices(InvoiceStatus(status) if status is not None else None)


@router.get("/{invoice_id}", response_model=Invoice)
def get_invoice(invoice_id: int, service: InvoiceStatusService = Depends(get_status_service)):
    return service.get_invoice(invoice_id)


@router.get("/{invoice_id}/history", response_model=list[StatusHistory])
def get_history(invoice_id: int, service: InvoiceStatusService = Depends(get_status_service)):
    """Status history, oldest first"""
    return service.get_history(invoice_id)


@router.get("/{invoice_id}/transitions", response_model=TransitionsResponse)
def get_valid_transitions(invoice_id: int, service: InvoiceStatusService = Depends(get_status_service)):
    invoice = service.get_invoice(invoice_id)
    return TransitionsResponse(
        invoice_id=invoice_id,
        current_status=int(invoice.status),
        valid_transitions=[int(s) for s in service.get_valid_transitions(invoice_id)],
    )


@router.get("/{invoice_id}/can-change/{new_status}", response_model=CanChangeResponse)
def can_change_status(invoice_id: int, new_status: int, service: InvoiceStatusService = Depends(get_status_service)):
    invoice = service.get_invoice(invoice_id)
    return CanChangeResponse(
        invoice_id=invoice_id,
        current_status=int(invoice.status),
        requested_status=new_status,
        allowed=service.can_change_status(invoice_id, new_status),
    )


@router.patch("/{invoice_id}/status", response_model=StatusChangeResponse)
def change_status(
    invoice_id: int,
    req: StatusChangeRequest,
    service: InvoiceStatusService = Depends(get_status_service),
):
    """
    Manually change an invoice's status.

    Example request:
    {
        "status": 1,
        "changed_by": "pm@example.com",
        "reason": "Checked against PO",
        "expected_status": 0
    }
    """
    result = service.change_status(
        invoice_id,
        req.status,
        changed_by=req.changed_by,
        reason=req.reason,
        expected_status=req.expected_status,
    )
    return StatusChangeResponse(invoice=result.invoice, history=result.history)


@router.post("/{invoice_id}/workflow/{action}", response_model=WorkflowActionResponse)
async def process_workflow_action(
    invoice_id: int,
    action: str,
    req: WorkflowActionRequest | None = None,
    workflow: WorkflowTriggerService = Depends(get_workflow_service),
):
    """
    Apply an automated workflow action (pm_reviewed, head_approved,
    procurement_processed, external_system_updated, pmo_review_requested,
    pmo_approved).

    When the action hands the invoice to another role, a card is posted to Teams.
    """
    user_id = req.user_id if req else None
    applied, result = await run_in_threadpool(workflow.process_workflow_action, invoice_id, action, user_id)

    notification = None
    if applied.notify:
        try:
            notification = await post_workflow_card(result.invoice, applied.name, applied.notify)
        except httpx.HTTPError as e:
            # Don't fail the action if the notification can't be delivered
            logger.warning(f"Failed to post workflow card: {e}")
            notification = {"status": "failed", "reason": str(e)}

    return WorkflowActionResponse(
        action=applied.name,
        invoice=result.invoice,
        history=result.history,
        notification=notification,
    )
