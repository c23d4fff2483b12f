"""
Tests for named workflow actions driving the state machine.
"""

import pytest

from invoice_engine.core.exceptions import InvalidTransitionError, UnknownWorkflowActionError, ValidationError
from invoice_engine.models.invoice import InvoiceStatus
from invoice_engine.services import status_rules
from invoice_engine.services.status_service import InvoiceStatusService
from invoice_engine.services.workflow_triggers import (
    WORKFLOW_ACTIONS,
    WorkflowTriggerService,
    get_workflow_action,
)

S = InvoiceStatus

CHAIN = ["pm_reviewed", "head_approved", "procurement_processed", "external_system_updated"]


@pytest.fixture
def workflow(status_service):
    return WorkflowTriggerService(status_service)


def test_every_action_is_a_legal_transition():
    for action in WORKFLOW_ACTIONS.values():
        assert status_rules.is_valid_transition(action.source, action.target), action.name


def test_full_chain_reaches_completed(workflow, invoice, store):
    for name in CHAIN:
        workflow.process_workflow_action(invoice.id, name, user_id="bot@example.com")

    completed = store.get_invoice(invoice.id)
    assert completed.status == S.COMPLETED
    assert completed.paid_amount == invoice.invoice_value
    assert completed.payment_date is not None
    history = store.get_history(invoice.id)
    assert [h.to_status for h in history] == [
        S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED, S.IN_PROGRESS, S.COMPLETED
    ]
    assert all(h.changed_by == "bot@example.com" for h in history[1:])


def test_chain_through_pmo_review(workflow, invoice, store):
    for name in CHAIN[:-1]:
        workflow.process_workflow_action(invoice.id, name)

    action, _ = workflow.process_workflow_action(invoice.id, "pmo_review_requested")
    assert action.notify == "pmo"
    workflow.process_workflow_action(invoice.id, "pmo_approved")

    completed = store.get_invoice(invoice.id)
    assert completed.status == S.COMPLETED
    assert completed.paid_amount == invoice.invoice_value
    assert [h.to_status for h in store.get_history(invoice.id)] == [
        S.SUBMITTED, S.UNDER_REVIEW, S.APPROVED, S.IN_PROGRESS, S.PMO_REVIEW, S.COMPLETED
    ]


def test_external_update_does_not_apply_during_pmo_review(workflow, invoice, store):
    for name in CHAIN[:-1] + ["pmo_review_requested"]:
        workflow.process_workflow_action(invoice.id, name)

    with pytest.raises(InvalidTransitionError):
        workflow.process_workflow_action(invoice.id, "external_system_updated")

    assert store.get_invoice(invoice.id).status == S.PMO_REVIEW


def test_action_result_carries_notify_role(workflow, invoice):
    action, result = workflow.process_workflow_action(invoice.id, "pm_reviewed")

    assert action.notify == "head"
    assert result.invoice.status == S.UNDER_REVIEW
    assert result.history.reason == action.description


def test_default_user_is_system(workflow, invoice):
    _, result = workflow.process_workflow_action(invoice.id, "pm_reviewed")

    assert result.history.changed_by == "System"


def test_unknown_action(workflow, invoice, store):
    with pytest.raises(UnknownWorkflowActionError) as exc_info:
        workflow.process_workflow_action(invoice.id, "teleport")

    assert isinstance(exc_info.value, ValidationError)
    assert "pm_reviewed" in exc_info.value.details["known_actions"]
    assert len(store.get_history(invoice.id)) == 1


def test_action_from_wrong_status(workflow, invoice, store):
    with pytest.raises(InvalidTransitionError) as exc_info:
        workflow.process_workflow_action(invoice.id, "head_approved")

    assert "requires status UnderReview" in exc_info.value.message
    assert exc_info.value.details["current_status"] == int(S.SUBMITTED)
    assert store.get_invoice(invoice.id).status == S.SUBMITTED
    assert len(store.get_history(invoice.id)) == 1


def test_action_names_are_case_insensitive():
    assert get_workflow_action("  PM_Reviewed ").name == "pm_reviewed"


def test_actions_may_apply_automation_only_transitions(store, disabled_publisher, invoice):
    service = InvoiceStatusService(
        store,
        automation_only={(S.SUBMITTED, S.UNDER_REVIEW)},
        event_publisher=disabled_publisher,
    )

    _, result = WorkflowTriggerService(service).process_workflow_action(invoice.id, "pm_reviewed")

    assert result.invoice.status == S.UNDER_REVIEW
