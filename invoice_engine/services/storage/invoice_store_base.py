"""
Abstract base class for invoice storage implementations.

Defines the interface that all invoice stores must implement, enabling
dependency injection and easy swapping of storage backends.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ...models.invoice import Invoice, InvoiceStatus, StatusChangeResult, StatusHistory


class InvoiceStoreBase(ABC):
    """
    Persists invoices and their append-only status history.

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-host deployments, shared across worker processes)

    Status writes go through ``update_status``, a compare-and-set on the
    invoice ``version``. The invoice row and its history row are written in
    one atomic step.
    """

    @abstractmethod
    def add_invoice(self, invoice: Invoice, history: StatusHistory) -> Invoice:
        """
        Insert a new invoice together with its seeded history row.

        Args:
            invoice: Invoice without an id
            history: The creation row (from_status None)

        Returns:
            The stored invoice with its assigned id

        Raises:
            DuplicateInvoiceError: invoice number already stored
        """
        pass

    @abstractmethod
    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        """Get an invoice by id, or None if not found."""
        pass

    @abstractmethod
    def get_by_number(self, invoice_number: str) -> Optional[Invoice]:
        """Get an invoice by its invoice number, or None if not found."""
        pass

    @abstractmethod
    def update_status(
        self, invoice_id: int, expected_version: int, updated: Invoice, history: StatusHistory
    ) -> Optional[StatusChangeResult]:
        """
        Replace the invoice and append ``history`` if the stored version still
        equals ``expected_version``.

        Returns:
            The stored invoice and the history row as written (with its id),
            or None when the version did not match (someone else changed the
            invoice first)
        """
        pass

    @abstractmethod
    def get_history(self, invoice_id: int) -> list[StatusHistory]:
        """Status history for one invoice, oldest first."""
        pass

    @abstractmethod
    def list_invoices(self, status: Optional[InvoiceStatus] = None) -> list[Invoice]:
        """List invoices, optionally filtered by status."""
        pass
