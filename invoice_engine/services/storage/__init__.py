from ...core.config import settings
from .invoice_store import InMemoryInvoiceStore
from .invoice_store_base import InvoiceStoreBase
from .invoice_store_sqlite import SQLiteInvoiceStore


def create_invoice_store(db_path: str | None = None) -> InvoiceStoreBase:
    """SQLite store when a database path is configured, in-memory otherwise."""
    db_path = settings.invoice_db_path if db_path is None else db_path
    if db_path:
        return SQLiteInvoiceStore(db_path)
    return InMemoryInvoiceStore()


# Global instance (in production, use dependency injection)
invoice_store = create_invoice_store()

__all__ = [
    "InvoiceStoreBase",
    "InMemoryInvoiceStore",
    "SQLiteInvoiceStore",
    "create_invoice_store",
    "invoice_store",
]
