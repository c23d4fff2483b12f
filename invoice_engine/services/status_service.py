"""
Invoice lifecycle state machine.

``InvoiceStatusService.change_status`` is the only code path that writes an
invoice's status. Each change is validated against the transition table,
serialized per invoice, written as a compare-and-set together with exactly
one StatusHistory row, and then announced on the event bus.
"""

from datetime import datetime, UTC
from typing import Iterable, Optional

from loguru import logger

from . import status_rules
from .events.event_publisher import EventPublisher, InvoiceStatusChangedEvent, get_event_publisher
from .locks import KeyedLock
from .storage.invoice_store_base import InvoiceStoreBase
from ..core.config import settings
from ..core.exceptions import (
    ConcurrencyConflict,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models.invoice import Invoice, InvoiceStatus, StatusChangeResult, StatusHistory


class InvoiceStatusService:
    """
    Validates and applies invoice status changes.

    Usage:
        service = InvoiceStatusService(store)
        service.change_status(invoice_id, InvoiceStatus.UNDER_REVIEW, changed_by="pm@example.com")

    Args:
        store: Invoice storage backend
        default_actor: Recorded as ``changed_by`` when the caller gives none
            (defaults to DEFAULT_ACTOR)
        automation_only: (from, to) pairs people may not apply
            (defaults to AUTOMATION_ONLY_TRANSITIONS)
        max_retries: Compare-and-set attempts before giving up
            (defaults to STATUS_CHANGE_MAX_RETRIES)
        event_publisher: Receives an InvoiceStatusChanged event per change
    """

    def __init__(
        self,
        store: InvoiceStoreBase,
        *,
        default_actor: Optional[str] = None,
        automation_only: Optional[Iterable[status_rules.Transition]] = None,
        max_retries: Optional[int] = None,
        event_publisher: Optional[EventPublisher] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.default_actor = default_actor or settings.default_actor
        if automation_only is None:
            automation_only = status_rules.parse_transition_pairs(settings.automation_only_transitions)
        self.automation_only = frozenset(automation_only)
        self.max_retries = max(1, settings.status_change_max_retries if max_retries is None else max_retries)
        self.event_publisher = event_publisher or get_event_publisher()
        self._locks = locks or KeyedLock()

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.store.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError(invoice_id)
        return invoice

    def get_history(self, invoice_id: int) -> list[StatusHistory]:
        self.get_invoice(invoice_id)
        return self.store.get_history(invoice_id)

    def get_valid_transitions(self, invoice_id: int, manual: bool = False) -> list[InvoiceStatus]:
        """
        Statuses the invoice can move to next.

        With ``manual=True`` the automation-only targets are left out.
        """
        current = self.get_invoice(invoice_id).status
        targets = status_rules.get_valid_transitions(current)
        if manual:
            targets = {t for t in targets if (current, t) not in self.automation_only}
        return sorted(targets)

    def can_change_status(self, invoice_id: int, new_status) -> bool:
        """True when a person may move the invoice to ``new_status`` right now."""
        try:
            requested = InvoiceStatus.parse(new_status)
        except ValueError:
            return False
        current = self.get_invoice(invoice_id).status
        return status_rules.can_change_status_manually(current, requested, self.automation_only)

    def change_status(
        self,
        invoice_id: int,
        new_status,
        changed_by: Optional[str] = None,
        reason: Optional[str] = None,
        *,
        automated: bool = False,
        expected_status=None,
    ) -> StatusChangeResult:
        """
        Move an invoice to ``new_status``.

        Args:
            invoice_id: Invoice to change
            new_status: Target status (enum, int or name)
            changed_by: Actor recorded in history (defaults to ``default_actor``)
            reason: Free-text comment stored with the history row
            automated: Applied by a workflow trigger; allows automation-only transitions
            expected_status: Status the caller last saw. If the invoice has moved
                on, ConcurrencyConflict is raised instead of applying the change.

        Returns:
            StatusChangeResult with the updated invoice and the new history row

        Raises:
            ValidationError: ``new_status`` is not a defined status
            NotFoundError: no such invoice
            InvalidTransitionError: the transition is not allowed; nothing is written
            ConcurrencyConflict: the invoice kept changing underneath us, or
                does not match ``expected_status``
        """
        requested = self._parse_status(new_status)
        expected = self._parse_status(expected_status) if expected_status is not None else None
        actor = changed_by or self.default_actor

        with self._locks.hold(invoice_id):
            result = self._apply(invoice_id, requested, expected, actor, reason, automated)

        self._publish(result.invoice, result.history, automated)
        return result

    def _apply(
        self,
        invoice_id: int,
        requested: InvoiceStatus,
        expected: Optional[InvoiceStatus],
        actor: str,
        reason: Optional[str],
        automated: bool,
    ) -> StatusChangeResult:
        """Validate and compare-and-set, re-validating after a lost race. Caller holds the invoice lock."""
        for attempt in range(self.max_retries):
            invoice = self.get_invoice(invoice_id)
            current = invoice.status

            if expected is not None and current != expected:
                raise ConcurrencyConflict(
                    f"Invoice {invoice_id} is {current.label}, expected {expected.label}",
                    {
                        "invoice_id": invoice_id,
                        "current_status": int(current),
                        "expected_status": int(expected),
                    },
                )
            self._check_transition(current, requested, automated)

            now = datetime.now(UTC)
            changes = {
                "status": requested,
                "processed_by": actor,
                "processed_date": now,
                "modified_by": actor,
                "modified_at": now,
                "version": invoice.version + 1,
            }
            if requested == InvoiceStatus.COMPLETED:
                changes["paid_amount"] = invoice.invoice_value
                changes["payment_date"] = now

            history = StatusHistory(
                invoice_id=invoice_id,
                from_status=current,
                to_status=requested,
                changed_by=actor,
                reason=reason,
                changed_at=now,
            )
            result = self.store.update_status(
                invoice_id, invoice.version, invoice.model_copy(update=changes), history
            )
            if result is not None:
                logger.info(
                    "Invoice status changed",
                    from_status=current.label,
                    to_status=requested.label,
                    reason=reason,
                    invoice_id=invoice_id,
                    invoice_number=result.invoice.invoice_number,
                    changed_by=actor,
                    automated=automated,
                )
                return result

            logger.warning(
                "Invoice changed concurrently, re-validating",
                invoice_id=invoice_id,
                attempt=attempt + 1,
            )

        raise ConcurrencyConflict(
            f"Invoice {invoice_id} kept changing; status change not applied",
            {"invoice_id": invoice_id, "attempts": self.max_retries},
        )

    def _check_transition(self, current: InvoiceStatus, requested: InvoiceStatus, automated: bool) -> None:
        legal = status_rules.get_valid_transitions(current)
        if requested not in legal:
            logger.warning(
                "Rejected invalid status transition",
                current=current.label,
                requested=requested.label,
            )
            raise InvalidTransitionError(current, requested, legal)

        if not automated and (current, requested) in self.automation_only:
            manual = {t for t in legal if (current, t) not in self.automation_only}
            raise InvalidTransitionError(
                current,
                requested,
                manual,
                reason=f"{current.label} to {requested.label} can only be applied by an automated workflow trigger",
            )

    @staticmethod
    def _parse_status(value) -> InvoiceStatus:
        try:
            return InvoiceStatus.parse(value)
        except ValueError as e:
            raise ValidationError(f"Unknown invoice status: {value!r}", [str(e)]) from e

    def _publish(self, invoice: Invoice, entry: StatusHistory, automated: bool) -> None:
        try:
            self.event_publisher.publish_status_changed(InvoiceStatusChangedEvent(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                vendor=invoice.vendor_name,
                invoice_value=str(invoice.invoice_value),
                from_status=int(entry.from_status) if entry.from_status is not None else None,
                to_status=int(entry.to_status),
                changed_by=entry.changed_by,
                reason=entry.reason,
                automated=automated,
                timestamp=entry.changed_at.isoformat(),
            ))
        except Exception as e:
            # Don't fail the status change if event publishing fails
            logger.warning(f"Failed to publish status change event: {e}")
