"""
Automated workflow triggers.

External events (a PM finishing review, the accounting system posting the
payment) arrive as named actions. Each action maps to exactly one
transition and is applied through the state machine with ``automated=True``,
so it is validated and audited like any other status change.
"""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from . import status_rules
from .status_service import InvoiceStatusService
from ..core.exceptions import InvalidTransitionError, UnknownWorkflowActionError
from ..models.invoice import InvoiceStatus, StatusChangeResult


@dataclass(frozen=True)
class WorkflowAction:
    name: str
    source: InvoiceStatus
    target: InvoiceStatus
    notify: Optional[str] = None  # Role to notify once applied
    description: str = ""


WORKFLOW_ACTIONS: dict[str, WorkflowAction] = {
    action.name: action
    for action in (
        WorkflowAction("pm_reviewed", InvoiceStatus.SUBMITTED, InvoiceStatus.UNDER_REVIEW, "head",
                       "Project manager reviewed the invoice"),
        WorkflowAction("head_approved", InvoiceStatus.UNDER_REVIEW, InvoiceStatus.APPROVED, "procurement",
                       "Head of department approved the invoice"),
        WorkflowAction("procurement_processed", InvoiceStatus.APPROVED, InvoiceStatus.IN_PROGRESS, None,
                       "Procurement processed the invoice"),
        WorkflowAction("external_system_updated", InvoiceStatus.IN_PROGRESS, InvoiceStatus.COMPLETED, None,
                       "External accounting system recorded the payment"),
        WorkflowAction("pmo_review_requested", InvoiceStatus.IN_PROGRESS, InvoiceStatus.PMO_REVIEW, "pmo",
                       "Invoice sent to the PMO for sign-off"),
        WorkflowAction("pmo_approved", InvoiceStatus.PMO_REVIEW, InvoiceStatus.COMPLETED, None,
                       "PMO signed off the invoice"),
    )
}


def get_workflow_action(name: str) -> WorkflowAction:
    """Look up an action by name (case-insensitive)."""
    action = WORKFLOW_ACTIONS.get((name or "").strip().lower())
    if action is None:
        raise UnknownWorkflowActionError(name, WORKFLOW_ACTIONS.keys())
    return action


class WorkflowTriggerService:
    def __init__(self, status_service: InvoiceStatusService):
        self.status_service = status_service

    def process_workflow_action(
        self, invoice_id: int, action_name: str, user_id: Optional[str] = None
    ) -> tuple[WorkflowAction, StatusChangeResult]:
        """
        Apply a named workflow action to an invoice.

        Raises:
            UnknownWorkflowActionError: no action with that name
            NotFoundError: no such invoice
            InvalidTransitionError: the invoice is not in the action's source status
        """
        action = get_workflow_action(action_name)
        invoice = self.status_service.get_invoice(invoice_id)

        if invoice.status != action.source:
            logger.warning(
                "Workflow action does not apply to current status",
                invoice_id=invoice_id,
                action=action.name,
                current=invoice.status.label,
                required=action.source.label,
            )
            raise InvalidTransitionError(
                invoice.status,
                action.target,
                status_rules.get_valid_transitions(invoice.status),
                reason=(
                    f"Action '{action.name}' requires status {action.source.label}, "
                    f"invoice is {invoice.status.label}"
                ),
            )

        result = self.status_service.change_status(
            invoice_id,
            action.target,
            changed_by=user_id,
            reason=action.description or f"Workflow action: {action.name}",
            automated=True,
            expected_status=action.source,
        )
        logger.info(
            "Workflow action applied",
            invoice_id=invoice_id,
            action=action.name,
            status=action.target.label,
        )
        return action, result
