"""
In-memory invoice store (for tests and local demo).
In production, point INVOICE_DB_PATH at a SQLite file.
"""
import threading
from typing import Dict, List, Optional

from .invoice_store_base import InvoiceStoreBase
from ...core.exceptions import DuplicateInvoiceError
from ...models.invoice import Invoice, InvoiceStatus, StatusChangeResult, StatusHistory


class InMemoryInvoiceStore(InvoiceStoreBase):
    def __init__(self):
        self._invoices: Dict[int, Invoice] = {}
        self._history: Dict[int, List[StatusHistory]] = {}
        self._next_invoice_id = 1
        self._next_history_id = 1
        self._lock = threading.Lock()

    def add_invoice(self, invoice: Invoice, history: StatusHistory) -> Invoice:
        """Insert an invoice and its creation history row"""
        with self._lock:
            if any(i.invoice_number == invoice.invoice_number for i in self._invoices.values()):
                raise DuplicateInvoiceError(invoice.invoice_number)

            stored = invoice.model_copy(deep=True, update={"id": self._next_invoice_id})
            self._next_invoice_id += 1
            self._invoices[stored.id] = stored
            self._history[stored.id] = [self._stamp(history, stored.id)]
            return stored.model_copy(deep=True)

    def get_invoice(self, invoice_id: int) -> Optional[Invoice]:
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            return invoice.model_copy(deep=True) if invoice else None

    def get_by_number(self, invoice_number: str) -> Optional[Invoice]:
        with self._lock:
            for invoice in self._invoices.values():
                if invoice.invoice_number == invoice_number:
                    return invoice.model_copy(deep=True)
        return None

    def update_status(
        self, invoice_id: int, expected_version: int, updated: Invoice, history: StatusHistory
    ) -> Optional[StatusChangeResult]:
        """Compare-and-set on version; appends history only when the write lands"""
        with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None or current.version != expected_version:
                return None
            stored = updated.model_copy(deep=True, update={"id": invoice_id})
            self._invoices[invoice_id] = stored
            entry = self._stamp(history, invoice_id)
            self._history[invoice_id].append(entry)
            return StatusChangeResult(invoice=stored.model_copy(deep=True), history=entry.model_copy())

    def get_history(self, invoice_id: int) -> list[StatusHistory]:
        with self._lock:
            return [h.model_copy() for h in self._history.get(invoice_id, [])]

    def list_invoices(self, status: Optional[InvoiceStatus] = None) -> list[Invoice]:
        """List invoices (newest first)"""
        with self._lock:
            invoices = sorted(self._invoices.values(), key=lambda i: i.id, reverse=True)
            return [i.model_copy(deep=True) for i in invoices if status is None or i.status == status]

    def clear(self) -> None:
        with self._lock:
            self._invoices.clear()
            self._history.clear()

    def _stamp(self, history: StatusHistory, invoice_id: int) -> StatusHistory:
        entry = history.model_copy(update={"id": self._next_history_id, "invoice_id": invoice_id})
        self._next_history_id += 1
        return entry
